"""
Filesystem mounting module.

This module mounts and unmounts a single filesystem and reports whether a
path is currently a mountpoint.
"""
import os
import logging
import subprocess
from pathlib import Path
from typing import List

from cryptboot.utils.command import CommandRunner
from cryptboot.utils.types import MountTarget
from cryptboot.core.exceptions import (
    MountError, AlreadyMountedError, SourceMissingError, MountFailedError,
    NotMountedError, MountBusyError
)

logger = logging.getLogger('cryptboot')


def _output(result: subprocess.CompletedProcess) -> str:
    return (result.stderr or result.stdout or "").strip() or f"exit status {result.returncode}"


class MountPoint:
    """
    Mounts and unmounts filesystems, always querying the live mount table.
    """
    def __init__(self, cmd_runner: CommandRunner):
        self.cmd_runner = cmd_runner

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return self.cmd_runner.run(cmd, check=False)
        except OSError as e:
            raise MountError(f"Cannot run {cmd[0]}: {e}") from e

    def is_mounted(self, target: MountTarget) -> bool:
        """
        Check whether something is mounted on the target path.

        Args:
            target: The mount target

        Returns:
            True if the path is a mountpoint
        """
        result = self._run(["findmnt", "--noheadings", "--output", "SOURCE", "--mountpoint", str(target.path)])
        return result.returncode == 0

    def _create_directory(self, path: Path) -> None:
        """
        Create the mountpoint directory if it doesn't exist.

        Args:
            path: Directory path to create

        Raises:
            MountFailedError: If the directory cannot be created
        """
        if path.is_dir():
            return
        try:
            path.mkdir(exist_ok=True, parents=True)
            logger.debug(f"Created mountpoint directory: {path}")
        except OSError as e:
            raise MountFailedError(f"Cannot create mountpoint {path}: {e}") from e

    def mount(self, target: MountTarget) -> None:
        """
        Mount the target's source on its path.

        Args:
            target: The mount target

        Raises:
            AlreadyMountedError: If the path is already a mountpoint
            SourceMissingError: If the source device does not exist
            MountFailedError: If mount fails
        """
        if self.is_mounted(target):
            raise AlreadyMountedError(f"{target.path} is already mounted")
        if not os.path.exists(target.source):
            raise SourceMissingError(f"Cannot mount {target.path}: {target.source} does not exist")

        self._create_directory(target.path)

        cmd = ["mount"]
        if target.options:
            cmd += ["-o", target.options]
        cmd += [str(target.source), str(target.path)]

        result = self._run(cmd)
        if result.returncode == 0:
            logger.debug(f"Mounted {target.source} to {target.path}")
            return

        message = _output(result)
        if "already mounted" in message:
            raise AlreadyMountedError(f"{target.path} is already mounted: {message}")
        raise MountFailedError(f"Failed to mount {target.source} to {target.path}: {message}")

    def unmount(self, target: MountTarget) -> None:
        """
        Unmount the target's path.

        Args:
            target: The mount target

        Raises:
            NotMountedError: If the path is not a mountpoint
            MountBusyError: If the filesystem is in use
            MountError: If umount fails for another reason
        """
        if not self.is_mounted(target):
            raise NotMountedError(f"{target.path} is not mounted")

        result = self._run(["umount", str(target.path)])
        if result.returncode == 0:
            logger.debug(f"Unmounted {target.path}")
            return

        message = _output(result)
        if "not mounted" in message:
            raise NotMountedError(f"{target.path} is not mounted: {message}")
        if "busy" in message:
            raise MountBusyError(f"{target.path} is busy: {message}")
        raise MountError(f"Failed to unmount {target.path}: {message}")
