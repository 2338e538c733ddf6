"""
Validation utilities.

This module provides functions for validating prerequisites.
"""
import os
import shutil
import logging
from typing import Iterable, List

from cryptboot.utils.command import SYSTEM_PATH

logger = logging.getLogger('cryptboot')

# Tools needed to open, mount and close the boot partition
PARTITION_TOOLS = ["cryptsetup", "mount", "umount", "findmnt"]
GRUB_TOOLS = ["grub-install", "grub-mkconfig"]
SIGNING_TOOLS = ["sbctl"]


def find_missing_tools(tools: Iterable[str]) -> List[str]:
    """
    Look up tools in the system PATH used to run them.

    Args:
        tools: Names of the executables

    Returns:
        Names of the tools that could not be found
    """
    return [tool for tool in tools if not shutil.which(tool, path=SYSTEM_PATH)]


def check_prerequisites(tools: Iterable[str], require_root: bool = True) -> None:
    """
    Check for required tools and permissions.

    Args:
        tools: Executables the command needs
        require_root: Whether root privileges are needed

    Raises:
        RuntimeError: If prerequisites are not met
    """
    tools = list(tools)
    if require_root and os.geteuid() != 0:
        raise RuntimeError("This program needs to run as root")

    missing_tools = find_missing_tools(tools)
    if missing_tools:
        raise RuntimeError(
            f"Missing required tools: {', '.join(missing_tools)}\n"
            "Please install the necessary packages for your distribution and try again"
        )
    logger.debug(f"All required tools found: {', '.join(tools)}")
