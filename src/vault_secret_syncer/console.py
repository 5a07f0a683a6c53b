"""Rich console utilities for styled log output.

This module provides a consistent logging interface for the long-running
syncer using the Rich library. Every message is timestamped and filtered
against a single process-wide level set once at startup.
"""

from rich.console import Console
from rich.theme import Theme

# Custom theme with consistent colors
_THEME = Theme(
    {
        "debug": "dim",
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
    }
)

_LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
}

# Shared console instance; logs go to stderr so stdout stays clean
console = Console(theme=_THEME, stderr=True, log_path=False)

_threshold: int = _LEVELS["info"]


def set_level(level: str) -> None:
    """Set the minimum level of messages that are printed.

    Args:
        level: One of ``debug``, ``info``, ``warning`` or ``error``
               (case insensitive).

    Raises:
        ValueError: If the level name is unknown.

    """
    global _threshold
    try:
        _threshold = _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: '{level}'") from None


def is_enabled(level: str) -> bool:
    """Return True if messages of the given level are printed."""
    return _LEVELS[level] >= _threshold


def _emit(level: str, icon: str, message: str) -> None:
    if is_enabled(level):
        console.log(f"[{level}]{icon}[/{level}] {message}")


def debug(message: str) -> None:
    """Print a debug message.

    Args:
        message: The message to display.

    """
    _emit("debug", "·", message)


def info(message: str) -> None:
    """Print an informational message.

    Args:
        message: The message to display.

    """
    _emit("info", "ℹ", message)


def success(message: str) -> None:
    """Print a success message.

    Args:
        message: The message to display.

    """
    _emit("info", "✓", f"[success]{message}[/success]")


def warning(message: str) -> None:
    """Print a warning message.

    Args:
        message: The message to display.

    """
    _emit("warning", "⚠", message)


def error(message: str) -> None:
    """Print an error message.

    Args:
        message: The message to display.

    """
    _emit("error", "✗", message)


def exception(message: str) -> None:
    """Print an error message followed by the active exception's traceback.

    Must be called from inside an ``except`` block.

    Args:
        message: The message to display.

    """
    error(message)
    if is_enabled("error"):
        console.print_exception(max_frames=10)


def highlight(text: str) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting.

    """
    return f"[highlight]{text}[/highlight]"
