"""
Logging configuration utilities.

This module sets up the 'cryptboot' logger used by every command.
"""
import logging
import sys

from cryptboot.utils.format import TermColors, colorize

LOG_FORMAT = 'cryptboot: %(level)s: %(message)s'
DEBUG_FORMAT = '%(asctime)s - %(level)s - %(message)s'

LEVEL_COLORS = {
    logging.WARNING: TermColors.WARNING,
    logging.ERROR: TermColors.ERROR,
    logging.CRITICAL: TermColors.ERROR,
}


class LevelFormatter(logging.Formatter):
    """
    Formatter exposing a lowercase, optionally colored level as %(level)s.
    """
    def __init__(self, fmt: str, datefmt: str = None, colored: bool = True):
        super().__init__(fmt, datefmt)
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname.lower()
        color = LEVEL_COLORS.get(record.levelno)
        if color is not None:
            level = colorize(level, color, self.colored)
        record.level = level
        return super().format(record)


def setup_logging(debug: bool = False, colored: bool = True) -> None:
    """
    Configure logging for the application.

    Args:
        debug: Whether to enable debug logging (adds timestamps)
        colored: Whether levels may be colored; only honoured on a terminal
    """
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(LevelFormatter(
        DEBUG_FORMAT if debug else LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        colored=colored and sys.stderr.isatty()
    ))
    logging.basicConfig(level=level, handlers=[handler])

    logger = logging.getLogger('cryptboot')
    logger.setLevel(level)
