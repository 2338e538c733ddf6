"""
Command-line interface for cryptboot.

This module handles argument parsing and dispatches the commands managing
the encrypted boot partition.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cryptboot import __version__
from cryptboot.utils.logging import setup_logging
from cryptboot.utils.command import CommandRunner
from cryptboot.utils.format import TermColors, colorize, format_status_table
from cryptboot.utils.passphrase import prompt_passphrase, key_file_passphrase
from cryptboot.utils.types import GrubSettings
from cryptboot.utils.validation import check_prerequisites, PARTITION_TOOLS, GRUB_TOOLS, SIGNING_TOOLS
from cryptboot.config import (
    Config, load_config, write_config,
    DEFAULT_CONFIG_PATH, DEFAULT_BOOT_MOUNTPOINT, DEFAULT_EFI_MOUNTPOINT, DEFAULT_MAPPER_NAME
)
from cryptboot.core.encryption import DeviceMapper
from cryptboot.core.mount import MountPoint
from cryptboot.core.partition import PartitionController
from cryptboot.core.session import run_guarded
from cryptboot.core.grub import GrubInstaller
from cryptboot.core.sbctl import SbctlHardener, sign_all
from cryptboot.core.run import run_under_mount
from cryptboot.core.exceptions import (
    CryptbootError, ConfigError, LifecycleError, GuardedError, CloseFailedAfterSuccess,
    SymlinkSwapFailedError, RunError
)

logger = logging.getLogger('cryptboot')

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_MANUAL_REPAIR = 3
EXIT_PARTITION_FAILURE = 125  # run: the partition could not be mounted or unmounted
EXIT_CANNOT_RUN = 127
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Arguments to parse (defaults to sys.argv)

    Returns:
        Namespace containing parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog="cryptboot",
        description="Manage an encrypted boot partition and secure boot signing keys"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help=(f"INI configuration file (default: {DEFAULT_CONFIG_PATH}); "
              "TOML files from earlier cryptboot releases are not read")
    )
    parser.add_argument(
        "-k", "--key-file",
        help="Read the passphrase of the boot device from this file instead of prompting"
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    configure = subparsers.add_parser("configure", help="Create a configuration from command line")
    configure.add_argument(
        "--boot-device", required=True,
        help="LUKS formatted device used to store boot files (path, UUID=... or PARTUUID=...)"
    )
    configure.add_argument(
        "--boot-mountpoint", default=str(DEFAULT_BOOT_MOUNTPOINT),
        help=f"Path where the boot partition is mounted (default: {DEFAULT_BOOT_MOUNTPOINT})"
    )
    configure.add_argument(
        "--efi-device", required=True,
        help="Device holding the EFI system partition (accessible by UEFI)"
    )
    configure.add_argument(
        "--efi-mountpoint", default=str(DEFAULT_EFI_MOUNTPOINT),
        help=f"Path where the EFI partition is mounted (default: {DEFAULT_EFI_MOUNTPOINT})"
    )
    configure.add_argument(
        "--mapper-name", default=DEFAULT_MAPPER_NAME,
        help=f"Device mapper name of the opened boot device (default: {DEFAULT_MAPPER_NAME})"
    )
    configure.add_argument(
        "--grub-target", default=GrubSettings.target,
        help=f"GRUB platform (default: {GrubSettings.target})"
    )
    configure.add_argument(
        "--bootloader-id", default=GrubSettings.bootloader_id,
        help=f"EFI bootloader id (default: {GrubSettings.bootloader_id})"
    )
    configure.add_argument(
        "-o", "--output",
        help="Write the configuration to this file instead of standard output"
    )

    subparsers.add_parser("mount", help="Open and mount the encrypted boot partition")
    subparsers.add_parser("umount", help="Unmount and close the encrypted boot partition")
    subparsers.add_parser("status", help="Show the state of the encrypted boot partition")

    grub_install = subparsers.add_parser("grub-install", help="Install GRUB in the EFI mountpoint")
    grub_install.add_argument("--no-sign", action="store_true", help="Do not sign GRUB after installation")

    subparsers.add_parser(
        "harden-sbctl", aliases=["move-sbctl"],
        help="Move sbctl keys to the encrypted boot partition and replace them with a symlink"
    )

    run = subparsers.add_parser("run", help="Mount the encrypted boot partition, run a command and unmount")
    run.add_argument(
        "-s", "--sign-all", action="store_true",
        help="Run sbctl sign-all before unmounting (useful when running a system update)"
    )
    run.add_argument("command_line", nargs=argparse.REMAINDER, help="Command line to run")

    args = parser.parse_args(argv)
    if args.command == "move-sbctl":
        args.command = "harden-sbctl"
    if args.command == "run":
        if args.command_line and args.command_line[0] == "--":
            args.command_line = args.command_line[1:]
        if not args.command_line and not args.sign_all:
            run.error("a command to run is required")
    return args


def required_tools(args: argparse.Namespace) -> List[str]:
    """
    List the external tools a command needs.

    Args:
        args: Command line arguments

    Returns:
        Names of the executables
    """
    tools = list(PARTITION_TOOLS)
    if args.command == "grub-install":
        tools += GRUB_TOOLS
        if not args.no_sign:
            tools += SIGNING_TOOLS
    elif args.command == "run" and args.sign_all:
        tools += SIGNING_TOOLS
    return tools


def build_controller(config: Config, args: argparse.Namespace, cmd_runner: CommandRunner) -> PartitionController:
    """
    Create the partition controller described by the configuration.

    Args:
        config: Loaded configuration
        args: Command line arguments
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        The PartitionController
    """
    if args.key_file:
        provider = key_file_passphrase(args.key_file)
    else:
        provider = prompt_passphrase(config.boot_device)

    return PartitionController(
        config.volume,
        config.boot_target,
        config.efi_target,
        DeviceMapper(cmd_runner),
        MountPoint(cmd_runner),
        provider,
    )


def configure(args: argparse.Namespace) -> int:
    """
    Write a configuration built from the command line.

    Args:
        args: Command line arguments

    Returns:
        Exit code
    """
    config = Config(
        boot_device=args.boot_device,
        efi_device=args.efi_device,
        boot_mountpoint=Path(args.boot_mountpoint),
        efi_mountpoint=Path(args.efi_mountpoint),
        mapper_name=args.mapper_name,
        grub=GrubSettings(target=args.grub_target, bootloader_id=args.bootloader_id),
    )
    config.validate()

    text = write_config(config, args.output)
    if not args.output:
        print(text, end="")
    return EXIT_SUCCESS


def show_status(controller: PartitionController, colored: bool) -> int:
    """Print the state of every part of the boot partition."""
    parts = controller.describe()
    print(format_status_table({
        f"{controller.volume.mapper_name} open": parts["device"],
        f"{controller.boot.path} mounted": parts["boot"],
        f"{controller.efi.path} mounted": parts["efi"],
    }, colored))
    print(f"state: {controller.status()}")
    return EXIT_SUCCESS


def grub_install(controller: PartitionController, config: Config, args: argparse.Namespace,
                 cmd_runner: CommandRunner) -> int:
    installer = GrubInstaller(config.grub, cmd_runner)

    def action() -> None:
        installer.install(controller)
        if not args.no_sign:
            sign_all(cmd_runner)

    run_guarded(controller, action)
    logger.info("GRUB installed successfully")
    return EXIT_SUCCESS


def harden_sbctl(controller: PartitionController, config: Config) -> int:
    hardener = SbctlHardener()
    moved = run_guarded(controller, lambda: hardener.harden(controller, config.key_store))
    if moved:
        logger.info("sbctl keys moved to the encrypted boot partition")
    else:
        logger.info("sbctl keys are already on the encrypted boot partition")
    return EXIT_SUCCESS


def run_command(controller: PartitionController, args: argparse.Namespace, cmd_runner: CommandRunner) -> int:
    """
    Run a command with the partition mounted and map the result to an exit code.

    The command's own exit status is propagated. Failing to mount or unmount
    the partition overrides it with EXIT_PARTITION_FAILURE.
    """
    try:
        if args.command_line:
            return run_under_mount(
                controller, args.command_line[0], args.command_line[1:], cmd_runner, sign=args.sign_all
            )
        run_guarded(controller, lambda: sign_all(cmd_runner))
        return EXIT_SUCCESS
    except (LifecycleError, CloseFailedAfterSuccess) as e:
        logger.error(str(e))
        return EXIT_PARTITION_FAILURE
    except GuardedError as e:
        logger.error(str(e))
        if e.close_error is not None:
            return EXIT_PARTITION_FAILURE
        if isinstance(e.cause, RunError):
            return EXIT_CANNOT_RUN
        return EXIT_FAILURE


def dispatch(args: argparse.Namespace, cmd_runner: CommandRunner) -> int:
    """
    Run the selected command.

    Args:
        args: Command line arguments
        cmd_runner: CommandRunner instance for executing commands

    Returns:
        Exit code
    """
    if args.command == "configure":
        return configure(args)

    check_prerequisites(required_tools(args))

    config = load_config(args.config)
    controller = build_controller(config, args, cmd_runner)

    if args.command == "mount":
        controller.open()
        logger.info(colorize(f"Boot partition mounted on {config.boot_mountpoint}",
                             TermColors.SUCCESS, cmd_runner.colored_output))
        return EXIT_SUCCESS
    if args.command == "umount":
        controller.close()
        logger.info(colorize("Boot partition unmounted and closed", TermColors.SUCCESS, cmd_runner.colored_output))
        return EXIT_SUCCESS
    if args.command == "status":
        return show_status(controller, cmd_runner.colored_output)
    if args.command == "grub-install":
        return grub_install(controller, config, args, cmd_runner)
    if args.command == "harden-sbctl":
        return harden_sbctl(controller, config)
    if args.command == "run":
        return run_command(controller, args, cmd_runner)

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function.

    Args:
        argv: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    args = None
    try:
        args = parse_arguments(argv)

        # Set up logging
        setup_logging(args.debug, colored=not args.no_color)

        cmd_runner = CommandRunner(colored_output=not args.no_color)
        return dispatch(args, cmd_runner)

    except RuntimeError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE

    except LifecycleError as e:
        logger.error(f"Step '{e.step}' failed: {e.cause}")
        logger.error("Run 'cryptboot status' to inspect the boot partition, then retry")
        return EXIT_FAILURE

    except GuardedError as e:
        if isinstance(e.cause, SymlinkSwapFailedError):
            logger.error(f"{e.cause}")
            logger.error("The sbctl key store needs manual repair before secure boot can be used")
            return EXIT_MANUAL_REPAIR
        logger.error(str(e))
        return EXIT_FAILURE

    except CryptbootError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    except KeyboardInterrupt:
        logger.error("Operation cancelled by user")
        logger.error("Run 'cryptboot status' to check that the boot partition was left consistent")
        return EXIT_INTERRUPTED

    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args is not None and args.debug:
            import traceback
            traceback.print_exc()
        return EXIT_FAILURE


# For module import compatibility
if __name__ == "__main__":
    sys.exit(main())
