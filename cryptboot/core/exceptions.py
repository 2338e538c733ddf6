"""
Base exceptions for cryptboot.

This module defines the hierarchy of exceptions used by cryptboot.
"""
from typing import Any, Optional


class CryptbootError(Exception):
    """Base exception for cryptboot errors"""
    pass


class ConfigError(CryptbootError):
    """Exception raised when the configuration file is missing or invalid"""
    pass


# Encrypted volume (cryptsetup) errors

class DeviceError(CryptbootError):
    """Exception raised when opening or closing the encrypted volume fails"""
    pass


class DeviceAlreadyOpenError(DeviceError):
    """Exception raised when a mapping with the same name already exists"""
    pass


class WrongPassphraseError(DeviceError):
    """Exception raised when the volume cannot be unlocked with the passphrase"""
    pass


class DeviceNotFoundError(DeviceError):
    """Exception raised when the underlying block device is absent"""
    pass


class DeviceBusyError(DeviceError):
    """Exception raised when the mapping is still in use"""
    pass


class DeviceNotOpenError(DeviceError):
    """Exception raised when closing a mapping that does not exist"""
    pass


# Mount errors

class MountError(CryptbootError):
    """Exception raised when there's an error in mounting or unmounting"""
    pass


class AlreadyMountedError(MountError):
    """Exception raised when the mountpoint is already mounted"""
    pass


class SourceMissingError(MountError):
    """Exception raised when the device to mount does not exist"""
    pass


class MountFailedError(MountError):
    """Exception raised when mount fails for any other reason"""
    pass


class NotMountedError(MountError):
    """Exception raised when unmounting a path that is not mounted"""
    pass


class MountBusyError(MountError):
    """Exception raised when a mountpoint is busy and cannot be unmounted"""
    pass


# Lifecycle errors

class LifecycleError(CryptbootError):
    """
    Exception raised when a partition open/close step fails.

    Attributes:
        step: The step that failed (a ``Step`` member)
        cause: The underlying DeviceError or MountError
    """
    def __init__(self, step: Any, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")


class GuardedError(CryptbootError):
    """
    Exception raised when the action run inside a guarded session fails.

    The action's error is the primary cause. If closing the partition
    afterwards also failed, the close error is kept in ``close_error``.
    """
    def __init__(self, cause: BaseException, close_error: Optional[LifecycleError] = None):
        self.cause = cause
        self.close_error = close_error
        message = str(cause)
        if close_error is not None:
            message = f"{message} (additionally, closing the partition failed: {close_error})"
        super().__init__(message)


class CloseFailedAfterSuccess(GuardedError):
    """
    Exception raised when the action succeeded but the partition could not be
    closed afterwards. The partition is left open.
    """
    def __init__(self, close_error: LifecycleError, value: Any = None):
        self.value = value
        super().__init__(close_error, close_error)

    def __str__(self) -> str:
        return f"operation succeeded but the boot partition was left open: {self.cause}"


# Bootloader installation errors

class InstallError(CryptbootError):
    """Exception raised when there's an error installing the bootloader"""
    pass


class BootloaderToolError(InstallError):
    """Exception raised when grub-install or grub-mkconfig fails"""
    pass


class PreconditionNotMountedError(InstallError):
    """Exception raised when the boot partition is not fully mounted"""
    pass


class SigningError(CryptbootError):
    """Exception raised when sbctl fails to sign boot files"""
    pass


# Key-store hardening errors

class HardenError(CryptbootError):
    """Exception raised when the sbctl key store cannot be relocated"""
    pass


class CopyFailedError(HardenError):
    """Exception raised when copying the key store fails"""
    pass


class VerificationMismatchError(HardenError):
    """Exception raised when the relocated copy does not match the original"""
    pass


class SymlinkSwapFailedError(HardenError):
    """
    Exception raised when the original key store could not be replaced by a
    symlink. Requires manual repair.
    """
    pass


class RunError(CryptbootError):
    """Exception raised when a command cannot be started"""
    pass
