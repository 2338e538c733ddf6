from pathlib import Path

import pytest

from cryptboot import cli
from cryptboot.config import Config, load_config
from cryptboot.core.exceptions import SymlinkSwapFailedError
from cryptboot.core.partition import PartitionState

from conftest import make_controller


@pytest.fixture
def fake_env(monkeypatch, system):
    """Replace system access with the in-memory fakes."""
    controller = make_controller(system)
    config = Config(boot_device="/dev/sda2", efi_device="/dev/sda1")
    calls = {}

    monkeypatch.setattr(cli, "check_prerequisites", lambda tools: calls.setdefault("tools", list(tools)))
    monkeypatch.setattr(cli, "load_config", lambda path: config)
    monkeypatch.setattr(cli, "build_controller", lambda config, args, cmd_runner: controller)
    return controller, calls


def test_configure_prints_config(capsys):
    code = cli.main(["configure", "--boot-device", "UUID=1234", "--efi-device", "/dev/sda1"])

    assert code == cli.EXIT_SUCCESS
    out = capsys.readouterr().out
    assert "[boot]" in out
    assert "device = UUID=1234" in out


def test_configure_writes_file(tmp_path):
    output = tmp_path / "config.ini"

    code = cli.main([
        "configure", "--boot-device", "/dev/sda2", "--efi-device", "/dev/sda1",
        "--efi-mountpoint", "/boot/esp", "-o", str(output),
    ])

    assert code == cli.EXIT_SUCCESS
    assert load_config(output).efi_mountpoint == Path("/boot/esp")


def test_configure_invalid_layout():
    code = cli.main(["configure", "--boot-device", "/dev/sda2", "--efi-device", "/dev/sda1",
                     "--efi-mountpoint", "/efi"])

    assert code == cli.EXIT_FAILURE


def test_configure_write_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")

    code = cli.main(["configure", "--boot-device", "/dev/sda2", "--efi-device", "/dev/sda1",
                     "-o", str(blocker / "config.ini")])

    assert code == cli.EXIT_FAILURE


def test_mount_and_umount(fake_env):
    controller, calls = fake_env

    assert cli.main(["mount"]) == cli.EXIT_SUCCESS
    assert controller.status() is PartitionState.FULLY_MOUNTED
    assert "cryptsetup" in calls["tools"]

    assert cli.main(["umount"]) == cli.EXIT_SUCCESS
    assert controller.status() is PartitionState.CLOSED


def test_mount_failure_exit_code(fake_env, system, caplog):
    system.passphrase = "other"

    assert cli.main(["mount"]) == cli.EXIT_FAILURE
    assert "open encrypted device" in caplog.text


def test_status(fake_env, capsys):
    assert cli.main(["--no-color", "status"]) == cli.EXIT_SUCCESS

    out = capsys.readouterr().out
    assert "state: closed" in out
    lines = out.splitlines()
    assert any(line.startswith("/boot mounted") and line.endswith("no") for line in lines)


def test_run_propagates_exit_status(fake_env, monkeypatch):
    controller, _ = fake_env
    monkeypatch.setattr(cli.CommandRunner, "run_interactive", lambda self, cmd: 7)

    assert cli.main(["run", "mkinitcpio", "-P"]) == 7
    assert controller.status() is PartitionState.CLOSED


def test_run_partition_failure_overrides(fake_env, system):
    system.passphrase = "other"

    assert cli.main(["run", "true"]) == cli.EXIT_PARTITION_FAILURE


def test_run_close_failure_overrides(fake_env, system, monkeypatch):
    def busy_command(self, cmd):
        system.busy.add(Path("/boot"))
        return 0

    monkeypatch.setattr(cli.CommandRunner, "run_interactive", busy_command)

    assert cli.main(["run", "true"]) == cli.EXIT_PARTITION_FAILURE


def test_run_requires_command():
    with pytest.raises(SystemExit):
        cli.main(["run"])


def test_run_sign_only(fake_env, monkeypatch):
    signed = []
    monkeypatch.setattr(cli, "sign_all", lambda cmd_runner: signed.append(True))

    assert cli.main(["run", "--sign-all"]) == cli.EXIT_SUCCESS
    assert signed == [True]


def test_grub_install(fake_env, monkeypatch):
    controller, calls = fake_env
    installed = []
    monkeypatch.setattr(cli.GrubInstaller, "install", lambda self, ctl: installed.append(ctl.status()))
    monkeypatch.setattr(cli, "sign_all", lambda cmd_runner: installed.append("signed"))

    assert cli.main(["grub-install"]) == cli.EXIT_SUCCESS
    assert installed == [PartitionState.FULLY_MOUNTED, "signed"]
    assert "grub-install" in calls["tools"] and "sbctl" in calls["tools"]
    assert controller.status() is PartitionState.CLOSED


def test_grub_install_no_sign(fake_env, monkeypatch):
    _, calls = fake_env
    monkeypatch.setattr(cli.GrubInstaller, "install", lambda self, ctl: None)
    monkeypatch.setattr(cli, "sign_all", lambda cmd_runner: pytest.fail("signed"))

    assert cli.main(["grub-install", "--no-sign"]) == cli.EXIT_SUCCESS
    assert "sbctl" not in calls["tools"]


def test_harden_swap_failure_needs_manual_repair(fake_env, monkeypatch):
    controller, _ = fake_env

    def failing_harden(self, ctl, key_store):
        raise SymlinkSwapFailedError("cannot link")

    monkeypatch.setattr(cli.SbctlHardener, "harden", failing_harden)

    assert cli.main(["move-sbctl"]) == cli.EXIT_MANUAL_REPAIR
    assert controller.status() is PartitionState.CLOSED


def test_harden_already_done(fake_env, monkeypatch):
    monkeypatch.setattr(cli.SbctlHardener, "harden", lambda self, ctl, key_store: False)

    assert cli.main(["harden-sbctl"]) == cli.EXIT_SUCCESS


def test_missing_prerequisites(monkeypatch):
    def missing(tools):
        raise RuntimeError("This program needs to run as root")

    monkeypatch.setattr(cli, "check_prerequisites", missing)

    assert cli.main(["mount"]) == cli.EXIT_FAILURE


def test_required_tools():
    args = cli.parse_arguments(["run", "-s", "pacman", "-Syu"])

    assert args.command_line == ["pacman", "-Syu"]
    assert "sbctl" in cli.required_tools(args)


def test_run_killed_by_signal_reports_shell_status(fake_env):
    controller, _ = fake_env

    assert cli.main(["run", "sh", "-c", "kill -TERM $$"]) == 128 + 15
    assert controller.status() is PartitionState.CLOSED
