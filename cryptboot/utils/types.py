"""
Type definitions for cryptboot.

This module provides the data classes describing the boot partition layout
and the other configuration facts shared across the code base.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


# Options applied when mounting, following ANSSI recommendations
DEFAULT_BOOT_OPTIONS = "nodev,nosuid"
DEFAULT_EFI_OPTIONS = "umask=0077,nodev,nosuid,noexec"

BY_UUID_DIR = Path("/dev/disk/by-uuid")
BY_PARTUUID_DIR = Path("/dev/disk/by-partuuid")
MAPPER_DIR = Path("/dev/mapper")


def resolve_device(spec: str) -> Path:
    """
    Resolve a device specification to a path under /dev.

    Args:
        spec: A device path, ``UUID=<uuid>`` or ``PARTUUID=<uuid>``

    Returns:
        Path of the device node
    """
    if spec.startswith("UUID="):
        return BY_UUID_DIR / spec[len("UUID="):]
    if spec.startswith("PARTUUID="):
        return BY_PARTUUID_DIR / spec[len("PARTUUID="):].lower()
    return Path(spec)


@dataclass
class EncryptedVolume:
    """LUKS volume holding the boot filesystem"""
    device: str
    mapper_name: str = "cryptboot-boot"

    @property
    def device_path(self) -> Path:
        return resolve_device(self.device)

    @property
    def mapper_path(self) -> Path:
        return MAPPER_DIR / self.mapper_name


@dataclass
class MountTarget:
    """A filesystem path and the device it is mounted from"""
    source: Path
    path: Path
    options: str = ""

    def __str__(self) -> str:
        return str(self.path)


@dataclass
class SecureBootKeyStore:
    """sbctl key store and the place it is relocated to"""
    path: Path = Path("/usr/share/secureboot")
    relocated: Optional[Path] = None


@dataclass
class GrubSettings:
    """grub-install parameters"""
    target: str = "x86_64-efi"
    bootloader_id: str = "GRUB"
    modules: List[str] = field(default_factory=list)
