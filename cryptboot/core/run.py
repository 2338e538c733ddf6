"""
Command execution under mount.

This module runs a user command while the boot partition is mounted.
"""
import logging
from typing import List, Optional

from cryptboot.utils.command import CommandRunner
from cryptboot.core.partition import PartitionController
from cryptboot.core.session import run_guarded
from cryptboot.core.sbctl import sign_all
from cryptboot.core.exceptions import RunError

logger = logging.getLogger('cryptboot')


def execute_external(cmd_runner: CommandRunner, command: str, args: List[str]) -> int:
    """
    Run a command and return its exit status.

    Args:
        cmd_runner: CommandRunner instance for executing commands
        command: Program to run
        args: Arguments of the program

    Returns:
        Exit status of the program

    Raises:
        RunError: If the program cannot be started
    """
    try:
        return cmd_runner.run_interactive([command, *args])
    except OSError as e:
        raise RunError(f"Cannot run {command}: {e}") from e


def run_under_mount(
    controller: PartitionController,
    command: str,
    args: List[str],
    cmd_runner: CommandRunner,
    sign: bool = False,
) -> int:
    """
    Open the boot partition, run a command, and close the partition.

    A non-zero exit status is returned as is, it is not an error.

    Args:
        controller: Controller of the boot partition
        command: Program to run
        args: Arguments of the program
        cmd_runner: CommandRunner instance for executing commands
        sign: Run ``sbctl sign-all`` after the command when it succeeded

    Returns:
        Exit status of the command
    """
    def action() -> int:
        status = execute_external(cmd_runner, command, args)
        if status != 0:
            logger.warning(f"{command} exited with status {status}")
        elif sign:
            sign_all(cmd_runner)
        return status

    return run_guarded(controller, action)
