"""
Secure boot key store module.

This module moves the sbctl key store onto the encrypted boot partition and
runs sbctl to sign boot files.
"""
import os
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Tuple

from cryptboot.utils.command import CommandRunner
from cryptboot.utils.types import SecureBootKeyStore
from cryptboot.core.partition import PartitionController, PartitionState
from cryptboot.core.exceptions import (
    HardenError, CopyFailedError, VerificationMismatchError, SymlinkSwapFailedError, SigningError
)

logger = logging.getLogger('cryptboot')

BACKUP_SUFFIX = ".cryptboot-old"


def tree_summary(root: Path) -> Tuple[int, int]:
    """
    Count the entries below a directory and the size of its regular files.

    Args:
        root: Directory to inspect

    Returns:
        Tuple of (number of entries, total size in bytes)
    """
    entries = 0
    size = 0
    for dirpath, dirnames, filenames in os.walk(root):
        entries += len(dirnames) + len(filenames)
        for name in filenames:
            path = os.path.join(dirpath, name)
            if not os.path.islink(path):
                size += os.path.getsize(path)
    return entries, size


def sign_all(cmd_runner: CommandRunner) -> None:
    """
    Sign every file registered in the sbctl database.

    Args:
        cmd_runner: CommandRunner instance for executing commands

    Raises:
        SigningError: If sbctl fails
    """
    logger.info("Signing boot files with sbctl")
    try:
        cmd_runner.run(["sbctl", "sign-all"])
    except subprocess.CalledProcessError as e:
        raise SigningError(f"sbctl sign-all failed: {(e.stderr or '').strip() or e}") from e
    except OSError as e:
        raise SigningError(f"Cannot run sbctl: {e}") from e


class SbctlHardener:
    """
    Relocates the sbctl key store onto the mounted encrypted volume.
    """
    def _copy(self, source: Path, destination: Path) -> None:
        if destination.exists():
            if destination.is_dir() and tree_summary(destination) == tree_summary(source):
                logger.warning(f"Reusing existing copy of the key store at {destination}")
                return
            raise CopyFailedError(f"{destination} already exists and does not match {source}")

        logger.info(f"Copying {source} to {destination}")
        try:
            shutil.copytree(source, destination, symlinks=True)
        except (OSError, shutil.Error) as e:
            self._discard_copy(destination)
            raise CopyFailedError(f"Failed to copy {source} to {destination}: {e}") from e

    def _discard_copy(self, destination: Path) -> None:
        try:
            shutil.rmtree(destination)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove incomplete copy {destination}: {e}")

    def _verify(self, source: Path, destination: Path) -> None:
        expected = tree_summary(source)
        actual = tree_summary(destination)
        if expected != actual:
            self._discard_copy(destination)
            raise VerificationMismatchError(
                f"Copy of {source} is incomplete: expected {expected[0]} entries/{expected[1]} bytes, "
                f"found {actual[0]} entries/{actual[1]} bytes"
            )

    def _swap(self, source: Path, destination: Path) -> Path:
        """
        Replace the original directory with a symlink to the relocated copy.

        The original is renamed aside first and restored if the symlink
        cannot be created.

        Returns:
            The path where the original directory was moved
        """
        backup = source.with_name(source.name + BACKUP_SUFFIX)
        if os.path.lexists(backup):
            raise SymlinkSwapFailedError(
                f"{backup} already exists, a previous hardening attempt needs manual cleanup"
            )

        try:
            os.rename(source, backup)
        except OSError as e:
            raise SymlinkSwapFailedError(f"Cannot move {source} aside: {e}") from e

        try:
            os.symlink(destination, source)
        except OSError as e:
            try:
                os.rename(backup, source)
            except OSError as restore_error:
                raise SymlinkSwapFailedError(
                    f"Cannot link {source} to {destination} ({e}) and cannot restore the original "
                    f"from {backup} ({restore_error}); the relocated copy is in {destination}"
                ) from e
            raise SymlinkSwapFailedError(
                f"Cannot link {source} to {destination}: {e}; original restored, "
                f"relocated copy kept in {destination}"
            ) from e

        return backup

    def harden(self, controller: PartitionController, key_store: SecureBootKeyStore) -> bool:
        """
        Move the key store onto the boot partition and link it back.

        Args:
            controller: Controller of the (open) boot partition
            key_store: Key store location and its relocation path

        Returns:
            True if the key store was moved, False if it already was a symlink

        Raises:
            HardenError: If the boot partition is not mounted or relocation fails
        """
        source = key_store.path
        destination = key_store.relocated or controller.boot.path / source.name

        if source.is_symlink():
            logger.info(f"{source} is already a symlink to {os.readlink(source)}, nothing to do")
            return False
        if not source.is_dir():
            raise CopyFailedError(f"Key store {source} does not exist")

        state = controller.status()
        if state not in (PartitionState.BOOT_MOUNTED, PartitionState.FULLY_MOUNTED):
            raise HardenError(f"Boot partition is not mounted (state: {state})")

        self._copy(source, destination)
        self._verify(source, destination)
        backup = self._swap(source, destination)
        logger.info(f"{source} now links to {destination}")

        try:
            shutil.rmtree(backup)
        except OSError as e:
            raise HardenError(
                f"Key store relocated but the old copy in {backup} could not be removed: {e}"
            ) from e
        return True
