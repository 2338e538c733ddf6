"""
Command execution utilities.

This module provides tools for executing external commands.
"""
import logging
import os
import subprocess
from typing import Dict, List, Optional

from cryptboot.utils.format import TermColors, colorize

logger = logging.getLogger('cryptboot')

# System tools are run with a minimal environment
SYSTEM_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


class CommandRunner:
    """
    Class responsible for command execution.
    Acts as a wrapper around subprocess.run with additional functionality.
    """
    def __init__(self, colored_output: bool = True, env: Optional[Dict[str, str]] = None):
        """
        Initialize the command runner.

        Args:
            colored_output: Whether to use colored output in terminal
            env: Environment for system tools (defaults to a sanitized one)
        """
        self.colored_output = colored_output
        self.env = env if env is not None else {"PATH": SYSTEM_PATH, "LC_ALL": "C"}
        self.commands_run: List[List[str]] = []

    def run(self, cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        """
        Run a system tool and capture its output.

        Args:
            cmd: Command to run as list of strings
            check: Whether to check for non-zero return code
            **kwargs: Additional arguments to pass to subprocess.run

        Returns:
            CompletedProcess instance from subprocess.run
        """
        cmd_str = ' '.join(cmd)
        logger.debug(f"Running command: {cmd_str}")
        self.commands_run.append(list(cmd))

        try:
            return subprocess.run(
                cmd,
                check=check,
                text=True,
                capture_output=True,
                env=self.env,
                **kwargs
            )
        except subprocess.CalledProcessError as e:
            logger.error(colorize(f"Command failed: {cmd_str}", TermColors.ERROR, self.colored_output))
            logger.error(f"Return code: {e.returncode}")
            logger.error(f"Stdout: {e.stdout}")
            logger.error(f"Stderr: {e.stderr}")
            raise

    def run_interactive(self, cmd: List[str]) -> int:
        """
        Run a user command attached to the terminal.

        The caller's environment is passed through and the output is not
        captured.

        Args:
            cmd: Command to run as list of strings

        Returns:
            The exit status of the command, 128 + N if it was killed by signal N

        Raises:
            OSError: If the command cannot be started
        """
        logger.debug(f"Running interactive command: {' '.join(cmd)}")
        self.commands_run.append(list(cmd))

        result = subprocess.run(cmd, check=False, env=os.environ.copy())
        if result.returncode < 0:
            logger.warning(f"{cmd[0]} was killed by signal {-result.returncode}")
            return 128 - result.returncode
        return result.returncode
