import pytest

from cryptboot.core.exceptions import GuardedError, LifecycleError, RunError
from cryptboot.core.partition import PartitionState
from cryptboot.core.run import run_under_mount, execute_external
from cryptboot.utils.command import CommandRunner

from conftest import make_controller


class InteractiveRunner:
    def __init__(self, status=0, error=None):
        self.status = status
        self.error = error
        self.commands = []

    def run_interactive(self, cmd):
        self.commands.append(cmd)
        if self.error:
            raise self.error
        return self.status

    def run(self, cmd, check=True, **kwargs):
        self.commands.append(cmd)


def test_nonzero_exit_status_is_returned_and_partition_closed(controller):
    status = run_under_mount(controller, "false", [], CommandRunner(colored_output=False))

    assert status != 0
    assert controller.status() is PartitionState.CLOSED


def test_zero_exit_status(controller):
    status = run_under_mount(controller, "true", [], CommandRunner(colored_output=False))

    assert status == 0
    assert controller.status() is PartitionState.CLOSED


def test_command_runs_while_mounted(system, controller):
    seen = []

    class Recorder(InteractiveRunner):
        def run_interactive(self, cmd):
            seen.append(controller.status())
            return super().run_interactive(cmd)

    runner = Recorder(status=3)

    assert run_under_mount(controller, "mkinitcpio", ["-P"], runner) == 3
    assert runner.commands == [["mkinitcpio", "-P"]]
    assert seen == [PartitionState.FULLY_MOUNTED]


def test_sign_after_successful_command(controller):
    runner = InteractiveRunner()

    run_under_mount(controller, "pacman", ["-Syu"], runner, sign=True)

    assert runner.commands == [["pacman", "-Syu"], ["sbctl", "sign-all"]]


def test_no_sign_after_failed_command(controller):
    runner = InteractiveRunner(status=1)

    run_under_mount(controller, "pacman", ["-Syu"], runner, sign=True)

    assert ["sbctl", "sign-all"] not in runner.commands


def test_command_not_found(controller):
    runner = InteractiveRunner(error=FileNotFoundError("No such file or directory"))

    with pytest.raises(GuardedError) as excinfo:
        run_under_mount(controller, "does-not-exist", [], runner)

    assert isinstance(excinfo.value.cause, RunError)
    assert controller.status() is PartitionState.CLOSED


def test_open_failure_prevents_command(system):
    controller = make_controller(system, passphrase="wrong")
    runner = InteractiveRunner()

    with pytest.raises(LifecycleError):
        run_under_mount(controller, "true", [], runner)
    assert runner.commands == []


def test_execute_external_wraps_os_errors():
    with pytest.raises(RunError):
        execute_external(InteractiveRunner(error=PermissionError("denied")), "/root/script", [])
