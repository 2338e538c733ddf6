"""
cryptboot - Encrypted boot partition management tool

This package keeps the boot partition of a Linux system inside a LUKS
container, opening and mounting it only while the bootloader, the kernel
images or the secure boot keys need to be updated.
"""

__version__ = "0.1.0"
