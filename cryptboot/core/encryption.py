"""
Encrypted volume module.

This module opens and closes the LUKS container holding the boot filesystem
through cryptsetup.
"""
import logging
import os
import stat
import subprocess
from pathlib import Path
from typing import List

from cryptboot.utils.command import CommandRunner
from cryptboot.utils.types import EncryptedVolume
from cryptboot.core.exceptions import (
    DeviceError, DeviceAlreadyOpenError, WrongPassphraseError,
    DeviceNotFoundError, DeviceBusyError, DeviceNotOpenError
)

logger = logging.getLogger('cryptboot')

# cryptsetup exit codes (see cryptsetup(8), RETURN CODES)
CRYPTSETUP_NO_PERMISSION = 2   # bad passphrase
CRYPTSETUP_WRONG_DEVICE = 4    # device missing or mapping inactive
CRYPTSETUP_EXISTS_OR_BUSY = 5


def is_block_device(path: Path) -> bool:
    """
    Check whether a path exists and is a block device.

    Args:
        path: Path to check

    Returns:
        True if the path is a block device
    """
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def _cryptsetup_message(result: subprocess.CompletedProcess) -> str:
    return (result.stderr or result.stdout or "").strip() or f"exit status {result.returncode}"


class DeviceMapper:
    """
    Opens and closes encrypted volumes with cryptsetup.
    """
    def __init__(self, cmd_runner: CommandRunner):
        self.cmd_runner = cmd_runner

    def _cryptsetup(self, args: List[str], **kwargs) -> subprocess.CompletedProcess:
        cmd = ["cryptsetup"] + args
        try:
            return self.cmd_runner.run(cmd, check=False, **kwargs)
        except OSError as e:
            raise DeviceError(f"Cannot run cryptsetup {args[0]}: {e}") from e

    def is_open(self, volume: EncryptedVolume) -> bool:
        """
        Check whether a mapping with the volume's mapper name exists.

        Args:
            volume: The encrypted volume

        Returns:
            True if the mapping is active
        """
        result = self._cryptsetup(["status", volume.mapper_name])
        return result.returncode == 0

    def open(self, volume: EncryptedVolume, passphrase: str) -> None:
        """
        Unlock the volume and expose it under its mapper name.

        Args:
            volume: The encrypted volume
            passphrase: Passphrase of the LUKS container

        Raises:
            DeviceNotFoundError: If the underlying block device is absent
            WrongPassphraseError: If the passphrase is rejected
            DeviceAlreadyOpenError: If the mapping already exists
            DeviceError: For any other cryptsetup failure
        """
        device = volume.device_path
        if not is_block_device(device):
            raise DeviceNotFoundError(f"Encrypted device not found or not a block device: {device}")

        logger.debug(f"Opening {device} as {volume.mapper_name}")
        result = self._cryptsetup(
            ["open", "--type", "luks", str(device), volume.mapper_name],
            input=f"{passphrase}\n"
        )
        if result.returncode == 0:
            return

        message = _cryptsetup_message(result)
        if result.returncode == CRYPTSETUP_NO_PERMISSION:
            raise WrongPassphraseError(f"No key available with this passphrase for {device}")
        if result.returncode == CRYPTSETUP_WRONG_DEVICE:
            raise DeviceNotFoundError(f"Cannot open {device}: {message}")
        if result.returncode == CRYPTSETUP_EXISTS_OR_BUSY and self.is_open(volume):
            raise DeviceAlreadyOpenError(f"Device {volume.mapper_name} already exists")
        raise DeviceError(f"cryptsetup open failed for {device}: {message}")

    def close(self, volume: EncryptedVolume) -> None:
        """
        Remove the volume mapping.

        Args:
            volume: The encrypted volume

        Raises:
            DeviceNotOpenError: If the mapping does not exist
            DeviceBusyError: If the mapping is still in use
            DeviceError: For any other cryptsetup failure
        """
        logger.debug(f"Closing {volume.mapper_name}")
        result = self._cryptsetup(["close", volume.mapper_name])
        if result.returncode == 0:
            return

        message = _cryptsetup_message(result)
        if result.returncode == CRYPTSETUP_WRONG_DEVICE:
            raise DeviceNotOpenError(f"Device {volume.mapper_name} is not active")
        if result.returncode == CRYPTSETUP_EXISTS_OR_BUSY:
            raise DeviceBusyError(f"Device {volume.mapper_name} is still in use: {message}")
        raise DeviceError(f"cryptsetup close failed for {volume.mapper_name}: {message}")
