"""
Bootloader installation module.

This module installs GRUB into the EFI system partition with the modules
needed to unlock the encrypted boot partition and to boot under secure boot
(no shim, images signed with sbctl).
"""
import logging
import subprocess
from typing import List

from cryptboot.utils.command import CommandRunner
from cryptboot.utils.types import GrubSettings
from cryptboot.core.partition import PartitionController, PartitionState
from cryptboot.core.exceptions import BootloaderToolError, PreconditionNotMountedError

logger = logging.getLogger('cryptboot')

# Under secure boot with --disable-shim-lock GRUB cannot load modules from
# disk, everything it needs must be embedded in the image.
GRUB_MODULES = [
    "all_video", "boot", "btrfs", "cat", "chain", "configfile", "echo",
    "efifwsetup", "efinet", "ext2", "fat", "font", "gettext", "gfxmenu",
    "gfxterm", "gfxterm_background", "gzio", "halt", "help", "hfsplus",
    "iso9660", "jpeg", "keystatus", "loadenv", "loopback", "linux", "ls",
    "lsefi", "lsefimmap", "lsefisystab", "lssal", "memdisk", "minicmd",
    "normal", "ntfs", "part_apple", "part_msdos", "part_gpt",
    "password_pbkdf2", "png", "probe", "reboot", "regexp", "search",
    "search_fs_uuid", "search_fs_file", "search_label", "sleep", "smbios",
    "squash4", "test", "true", "video", "xfs", "zfs", "zfscrypt", "zfsinfo",
    # crypto support
    "cryptodisk", "gcry_arcfour", "gcry_blowfish", "gcry_camellia",
    "gcry_cast5", "gcry_crc", "gcry_des", "gcry_dsa", "gcry_idea",
    "gcry_md4", "gcry_md5", "gcry_rfc2268", "gcry_rijndael", "gcry_rmd160",
    "gcry_rsa", "gcry_seed", "gcry_serpent", "gcry_sha1", "gcry_sha256",
    "gcry_sha512", "gcry_tiger", "gcry_twofish", "gcry_whirlpool", "luks",
    "lvm", "mdraid09", "mdraid1x", "raid5rec", "raid6rec",
]

# Modules only available on x86 EFI platforms
X86_EFI_MODULES = ["cpuid", "play", "tpm"]


class GrubInstaller:
    """
    Installs GRUB into the EFI mountpoint of an open boot partition.
    """
    def __init__(self, settings: GrubSettings, cmd_runner: CommandRunner):
        self.settings = settings
        self.cmd_runner = cmd_runner

    def modules_for_target(self, target: str) -> List[str]:
        """
        Build the list of modules embedded in the GRUB image.

        Args:
            target: GRUB platform (e.g. x86_64-efi)

        Returns:
            Ordered list of module names without duplicates
        """
        modules = list(GRUB_MODULES)
        if target in ("x86_64-efi", "i386-efi"):
            modules.extend(X86_EFI_MODULES)

        for module in self.settings.modules:
            if module not in modules:
                modules.append(module)
        return modules

    def _run_tool(self, cmd: List[str]) -> None:
        try:
            self.cmd_runner.run(cmd)
        except subprocess.CalledProcessError as e:
            raise BootloaderToolError(f"{cmd[0]} failed: {(e.stderr or '').strip() or e}") from e
        except OSError as e:
            raise BootloaderToolError(f"Cannot run {cmd[0]}: {e}") from e

    def mkconfig(self, controller: PartitionController) -> None:
        """
        Generate grub.cfg on the boot partition.

        Args:
            controller: Controller of the open boot partition

        Raises:
            BootloaderToolError: If grub-mkconfig fails
        """
        grub_dir = controller.boot.path / "grub"
        try:
            grub_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise BootloaderToolError(f"Cannot create {grub_dir}: {e}") from e

        logger.info(f"Generating {grub_dir / 'grub.cfg'}")
        self._run_tool(["grub-mkconfig", "-o", str(grub_dir / "grub.cfg")])

    def install(self, controller: PartitionController) -> None:
        """
        Regenerate the configuration and install GRUB into the EFI partition.

        The partition must already be fully mounted; this method never opens it.

        Args:
            controller: Controller of the open boot partition

        Raises:
            PreconditionNotMountedError: If the partition is not fully mounted
            BootloaderToolError: If a GRUB tool fails
        """
        state = controller.status()
        if state != PartitionState.FULLY_MOUNTED:
            raise PreconditionNotMountedError(f"Boot partition must be fully mounted (state: {state})")

        esp = controller.efi.path
        if not esp.is_dir():
            raise PreconditionNotMountedError(f"EFI directory not found: {esp}")

        self.mkconfig(controller)

        logger.info(f"Installing GRUB ({self.settings.target}) into {esp}")
        self._run_tool([
            "grub-install",
            f"--target={self.settings.target}",
            f"--efi-directory={esp}",
            f"--bootloader-id={self.settings.bootloader_id}",
            f"--modules={' '.join(self.modules_for_target(self.settings.target))}",
            "--disable-shim-lock",
        ])
