"""
Passphrase providers.

A provider is a callable returning the passphrase of the encrypted boot
device. It is only called when the device actually needs to be unlocked.
"""
import getpass
import logging
from pathlib import Path
from typing import Callable, Union

from cryptboot.core.exceptions import ConfigError

logger = logging.getLogger('cryptboot')


def prompt_passphrase(device: str) -> Callable[[], str]:
    """
    Build a provider asking the passphrase on the terminal.

    Args:
        device: Device shown in the prompt

    Returns:
        Passphrase provider
    """
    def provider() -> str:
        return getpass.getpass(f"Enter passphrase for {device}: ")
    return provider


def key_file_passphrase(path: Union[str, Path]) -> Callable[[], str]:
    """
    Build a provider reading the passphrase from a file.

    Only the first line of the file is used.

    Args:
        path: File holding the passphrase

    Returns:
        Passphrase provider
    """
    def provider() -> str:
        logger.debug(f"Reading passphrase from {path}")
        try:
            with open(path, encoding="utf-8") as fh:
                return fh.readline().rstrip("\n")
        except OSError as e:
            raise ConfigError(f"Cannot read key file {path}: {e}") from e
    return provider
