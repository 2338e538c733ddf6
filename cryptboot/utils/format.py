"""
Formatting utilities.

This module provides consistent terminal output formatting.
"""
from typing import Dict


# ANSI Terminal Colors
class TermColors:
    """ANSI color codes for terminal output"""
    INFO = '\033[94m'     # Blue for informational messages
    SUCCESS = '\033[92m'  # Green for success messages
    WARNING = '\033[93m'  # Yellow for warnings
    ERROR = '\033[91m'    # Red for errors
    BOLD = '\033[1m'      # Bold text
    ENDC = '\033[0m'      # End color


def colorize(message: str, color: str, enabled: bool = True) -> str:
    """
    Add color to a message if color output is enabled.

    Args:
        message: The message to colorize
        color: The color to use (from TermColors)
        enabled: Whether colorization is enabled

    Returns:
        Colorized message or original message if colors disabled
    """
    if not enabled:
        return message
    return f"{color}{message}{TermColors.ENDC}"


def format_status_table(rows: Dict[str, bool], enabled: bool = True) -> str:
    """
    Render a two-column yes/no table.

    Args:
        rows: Mapping of labels to a boolean state
        enabled: Whether colorization is enabled

    Returns:
        The table as a single string
    """
    width = max((len(label) for label in rows), default=0)
    lines = []
    for label, state in rows.items():
        value = colorize("yes", TermColors.SUCCESS, enabled) if state else colorize("no", TermColors.WARNING, enabled)
        lines.append(f"{label.ljust(width)}  {value}")
    return "\n".join(lines)
