"""
Configuration file handling.

This module loads and writes the cryptboot configuration, an INI file
describing the encrypted boot device, the EFI partition, the GRUB settings
and the sbctl key store.
"""
import configparser
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cryptboot.utils.types import (
    EncryptedVolume, MountTarget, SecureBootKeyStore, GrubSettings,
    DEFAULT_BOOT_OPTIONS, DEFAULT_EFI_OPTIONS, resolve_device
)
from cryptboot.core.exceptions import ConfigError

logger = logging.getLogger('cryptboot')

DEFAULT_CONFIG_PATH = Path("/etc/cryptboot/config.ini")
DEFAULT_MAPPER_NAME = "cryptboot-boot"
DEFAULT_BOOT_MOUNTPOINT = Path("/boot")
DEFAULT_EFI_MOUNTPOINT = Path("/boot/efi")
DEFAULT_KEYSTORE = Path("/usr/share/secureboot")
DEFAULT_KEYSTORE_DESTINATION = "secureboot"
# Configuration written by earlier cryptboot releases
LEGACY_CONFIG_PATH = Path("/etc/cryptboot/config.toml")


@dataclass
class Config:
    """Complete cryptboot configuration"""
    boot_device: str
    efi_device: str
    boot_mountpoint: Path = DEFAULT_BOOT_MOUNTPOINT
    efi_mountpoint: Path = DEFAULT_EFI_MOUNTPOINT
    mapper_name: str = DEFAULT_MAPPER_NAME
    boot_options: str = DEFAULT_BOOT_OPTIONS
    efi_options: str = DEFAULT_EFI_OPTIONS
    grub: GrubSettings = field(default_factory=GrubSettings)
    keystore: Path = DEFAULT_KEYSTORE
    keystore_destination: str = DEFAULT_KEYSTORE_DESTINATION

    def validate(self) -> None:
        """
        Check the configuration for consistency.

        Raises:
            ConfigError: If the configuration is invalid
        """
        if not self.boot_device:
            raise ConfigError("boot device is not set")
        if not self.efi_device:
            raise ConfigError("EFI device is not set")
        if not self.mapper_name or "/" in self.mapper_name:
            raise ConfigError(f"invalid mapper name: {self.mapper_name!r}")
        if not self.boot_mountpoint.is_absolute() or not self.efi_mountpoint.is_absolute():
            raise ConfigError("mountpoints must be absolute paths")
        if self.efi_mountpoint == self.boot_mountpoint or self.boot_mountpoint not in self.efi_mountpoint.parents:
            raise ConfigError(
                f"EFI mountpoint {self.efi_mountpoint} must be inside boot mountpoint {self.boot_mountpoint}"
            )
        if Path(self.keystore_destination).is_absolute():
            raise ConfigError("sbctl destination must be relative to the boot mountpoint")

    @property
    def volume(self) -> EncryptedVolume:
        return EncryptedVolume(device=self.boot_device, mapper_name=self.mapper_name)

    @property
    def boot_target(self) -> MountTarget:
        return MountTarget(source=self.volume.mapper_path, path=self.boot_mountpoint, options=self.boot_options)

    @property
    def efi_target(self) -> MountTarget:
        return MountTarget(source=resolve_device(self.efi_device), path=self.efi_mountpoint, options=self.efi_options)

    @property
    def key_store(self) -> SecureBootKeyStore:
        return SecureBootKeyStore(path=self.keystore, relocated=self.boot_mountpoint / self.keystore_destination)


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load the configuration file.

    Args:
        path: Path of the INI file

    Returns:
        The parsed Config

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    path = Path(path)
    if path.suffix == ".toml":
        raise ConfigError(
            f"{path} is a TOML file; cryptboot reads INI configuration, run 'cryptboot configure' to create one"
        )

    parser = configparser.ConfigParser()
    try:
        with open(path, encoding="utf-8") as fh:
            parser.read_file(fh)
    except OSError as e:
        if LEGACY_CONFIG_PATH.exists():
            raise ConfigError(
                f"failed to read configuration file {path}: {e} "
                f"({LEGACY_CONFIG_PATH} is no longer read, convert it with 'cryptboot configure')"
            ) from e
        raise ConfigError(f"failed to read configuration file {path}: {e}") from e
    except configparser.Error as e:
        raise ConfigError(f"invalid configuration file {path}: {e}") from e

    logger.debug(f"Loaded configuration from {path}")

    try:
        config = Config(
            boot_device=parser.get("boot", "device"),
            efi_device=parser.get("efi", "device"),
            boot_mountpoint=Path(parser.get("boot", "mountpoint", fallback=str(DEFAULT_BOOT_MOUNTPOINT))),
            efi_mountpoint=Path(parser.get("efi", "mountpoint", fallback=str(DEFAULT_EFI_MOUNTPOINT))),
            mapper_name=parser.get("boot", "mapper_name", fallback=DEFAULT_MAPPER_NAME),
            boot_options=parser.get("boot", "options", fallback=DEFAULT_BOOT_OPTIONS),
            efi_options=parser.get("efi", "options", fallback=DEFAULT_EFI_OPTIONS),
            grub=GrubSettings(
                target=parser.get("grub", "target", fallback=GrubSettings.target),
                bootloader_id=parser.get("grub", "bootloader_id", fallback=GrubSettings.bootloader_id),
                modules=parser.get("grub", "modules", fallback="").split(),
            ),
            keystore=Path(parser.get("sbctl", "keystore", fallback=str(DEFAULT_KEYSTORE))),
            keystore_destination=parser.get("sbctl", "destination", fallback=DEFAULT_KEYSTORE_DESTINATION),
        )
    except configparser.Error as e:
        raise ConfigError(f"invalid configuration file {path}: {e}") from e

    config.validate()
    return config


def render_config(config: Config) -> str:
    """
    Serialize a configuration to INI text.

    Args:
        config: Configuration to serialize

    Returns:
        The INI document
    """
    parser = configparser.ConfigParser()
    parser["boot"] = {
        "device": config.boot_device,
        "mountpoint": str(config.boot_mountpoint),
        "mapper_name": config.mapper_name,
        "options": config.boot_options,
    }
    parser["efi"] = {
        "device": config.efi_device,
        "mountpoint": str(config.efi_mountpoint),
        "options": config.efi_options,
    }
    parser["grub"] = {
        "target": config.grub.target,
        "bootloader_id": config.grub.bootloader_id,
        "modules": " ".join(config.grub.modules),
    }
    parser["sbctl"] = {
        "keystore": str(config.keystore),
        "destination": config.keystore_destination,
    }

    buffer = io.StringIO()
    parser.write(buffer)
    return buffer.getvalue()


def write_config(config: Config, path: Optional[Union[str, Path]] = None) -> str:
    """
    Write a configuration to a file, creating its directory if needed.

    Args:
        config: Configuration to write
        path: Destination file

    Returns:
        The written INI document

    Raises:
        ConfigError: If the file cannot be written
    """
    text = render_config(config)
    if path is None:
        return text

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to write configuration file {path}: {e}") from e
    logger.info(f"Configuration written to {path}")
    return text
