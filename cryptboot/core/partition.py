"""
Boot partition lifecycle module.

This module composes the encrypted volume and its two filesystems (the boot
filesystem and the EFI system partition mounted inside it) into a single
resource that can be opened, closed and queried.

Every operation re-reads the live system state: the tool may run after a
crash left the partition half open, so nothing is cached between calls.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Type

from cryptboot.utils.types import EncryptedVolume, MountTarget
from cryptboot.core.encryption import DeviceMapper
from cryptboot.core.mount import MountPoint
from cryptboot.core.exceptions import (
    DeviceError, MountError, LifecycleError, MountFailedError,
    DeviceAlreadyOpenError, DeviceNotOpenError, AlreadyMountedError, NotMountedError
)

logger = logging.getLogger('cryptboot')

PassphraseProvider = Callable[[], str]


class Step(Enum):
    """Individual transitions of the boot partition"""
    DEVICE_OPEN = "open encrypted device"
    BOOT_MOUNT = "mount boot filesystem"
    EFI_MOUNT = "mount EFI filesystem"
    EFI_UNMOUNT = "unmount EFI filesystem"
    BOOT_UNMOUNT = "unmount boot filesystem"
    DEVICE_CLOSE = "close encrypted device"

    def __str__(self) -> str:
        return self.value


class PartitionState(Enum):
    """State of the boot partition derived from the system"""
    CLOSED = "closed"
    DEVICE_OPEN = "device open"
    BOOT_MOUNTED = "boot mounted"
    FULLY_MOUNTED = "fully mounted"
    # Not reachable through open(); left behind by a crash or manual changes
    INCONSISTENT = "inconsistent"

    def __str__(self) -> str:
        return self.value


class PartitionController:
    """
    Opens, closes and reports the state of the encrypted boot partition.
    """
    def __init__(
        self,
        volume: EncryptedVolume,
        boot: MountTarget,
        efi: MountTarget,
        device_mapper: DeviceMapper,
        mount_point: MountPoint,
        passphrase_provider: PassphraseProvider,
    ):
        """
        Initialize the controller.

        Args:
            volume: The LUKS volume holding the boot filesystem
            boot: Mount target of the boot filesystem (source is the mapping)
            efi: Mount target of the EFI filesystem, nested inside boot
            device_mapper: Opens and closes the volume
            mount_point: Mounts and unmounts filesystems
            passphrase_provider: Called only when the volume must be unlocked
        """
        self.volume = volume
        self.boot = boot
        self.efi = efi
        self.device_mapper = device_mapper
        self.mount_point = mount_point
        self.passphrase_provider = passphrase_provider

    def _run_step(self, step: Step, action: Callable[[], None], benign: Type[Exception]) -> None:
        """
        Run one transition, mapping low level errors to a LifecycleError.

        Args:
            step: The step being performed
            action: The transition itself
            benign: Error meaning the step is already done
        """
        try:
            action()
        except benign as e:
            logger.debug(f"{step}: already done ({e})")
        except (DeviceError, MountError) as e:
            logger.error(f"Step '{step}' failed: {e}")
            raise LifecycleError(step, e) from e

    def _query(self, step: Step, check: Callable[[], bool]) -> bool:
        """Run a state query on behalf of a step, mapping failures like _run_step."""
        try:
            return check()
        except (DeviceError, MountError) as e:
            logger.error(f"Step '{step}' failed: {e}")
            raise LifecycleError(step, e) from e

    def open(self) -> None:
        """
        Open the volume, mount the boot filesystem, then mount EFI.

        Steps already satisfied are skipped. On failure the partition stays
        in the furthest state reached so that a retry can resume.

        Raises:
            LifecycleError: If a step fails
        """
        if self._query(Step.DEVICE_OPEN, lambda: self.device_mapper.is_open(self.volume)):
            logger.debug(f"{Step.DEVICE_OPEN}: {self.volume.mapper_name} is already open")
        else:
            logger.info(f"Opening encrypted boot device {self.volume.device_path}")
            passphrase = self.passphrase_provider()
            self._run_step(
                Step.DEVICE_OPEN,
                lambda: self.device_mapper.open(self.volume, passphrase),
                DeviceAlreadyOpenError
            )

        if self._query(Step.BOOT_MOUNT, lambda: self.mount_point.is_mounted(self.boot)):
            logger.debug(f"{Step.BOOT_MOUNT}: {self.boot.path} is already mounted")
        else:
            if self._query(Step.BOOT_MOUNT, lambda: self.mount_point.is_mounted(self.efi)):
                # Mounting boot now would hide the EFI mount underneath it
                raise LifecycleError(
                    Step.BOOT_MOUNT,
                    MountFailedError(f"{self.efi.path} is mounted while {self.boot.path} is not")
                )
            logger.info(f"Mounting {self.boot.source} on {self.boot.path}")
            self._run_step(Step.BOOT_MOUNT, lambda: self.mount_point.mount(self.boot), AlreadyMountedError)

        if self._query(Step.EFI_MOUNT, lambda: self.mount_point.is_mounted(self.efi)):
            logger.debug(f"{Step.EFI_MOUNT}: {self.efi.path} is already mounted")
        else:
            logger.info(f"Mounting {self.efi.source} on {self.efi.path}")
            self._run_step(Step.EFI_MOUNT, lambda: self.mount_point.mount(self.efi), AlreadyMountedError)

    def close(self) -> None:
        """
        Unmount EFI, unmount the boot filesystem, then close the volume.

        Steps already satisfied are skipped.

        Raises:
            LifecycleError: If a step fails
        """
        if self._query(Step.EFI_UNMOUNT, lambda: self.mount_point.is_mounted(self.efi)):
            logger.info(f"Unmounting {self.efi.path}")
            self._run_step(Step.EFI_UNMOUNT, lambda: self.mount_point.unmount(self.efi), NotMountedError)
        else:
            logger.debug(f"{Step.EFI_UNMOUNT}: {self.efi.path} is not mounted")

        if self._query(Step.BOOT_UNMOUNT, lambda: self.mount_point.is_mounted(self.boot)):
            logger.info(f"Unmounting {self.boot.path}")
            self._run_step(Step.BOOT_UNMOUNT, lambda: self.mount_point.unmount(self.boot), NotMountedError)
        else:
            logger.debug(f"{Step.BOOT_UNMOUNT}: {self.boot.path} is not mounted")

        if self._query(Step.DEVICE_CLOSE, lambda: self.device_mapper.is_open(self.volume)):
            logger.info(f"Closing encrypted boot device {self.volume.mapper_name}")
            self._run_step(Step.DEVICE_CLOSE, lambda: self.device_mapper.close(self.volume), DeviceNotOpenError)
        else:
            logger.debug(f"{Step.DEVICE_CLOSE}: {self.volume.mapper_name} is not open")

    def describe(self) -> Dict[str, bool]:
        """
        Query the state of every component of the partition.

        Returns:
            Dict with keys "device", "boot" and "efi"
        """
        return {
            "device": self.device_mapper.is_open(self.volume),
            "boot": self.mount_point.is_mounted(self.boot),
            "efi": self.mount_point.is_mounted(self.efi),
        }

    def status(self) -> PartitionState:
        """
        Derive the partition state from the system.

        Returns:
            The current PartitionState
        """
        parts = self.describe()
        device, boot, efi = parts["device"], parts["boot"], parts["efi"]

        if not (device or boot or efi):
            return PartitionState.CLOSED
        if device and boot and efi:
            return PartitionState.FULLY_MOUNTED
        if device and boot:
            return PartitionState.BOOT_MOUNTED
        if device and not efi:
            return PartitionState.DEVICE_OPEN
        return PartitionState.INCONSISTENT
