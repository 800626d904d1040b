"""
Terminal capability detection and cursor control for output sinks.

Sinks are plain writable streams; anything that is not an interactive
terminal gets plain line output with no control sequences.
"""

import os
from typing import IO

CLEAR_LINE = "\x1b[2K"


def is_terminal(stream: IO) -> bool:
    """Determine whether a sink is an interactive terminal.

    Returns False if:
    - NO_COLOR or DOCKSHIP_PLAIN_OUTPUT is set
    - The stream has no isatty() or it reports False
    - The stream is already closed
    """
    if os.environ.get("NO_COLOR", "") or os.environ.get("DOCKSHIP_PLAIN_OUTPUT", ""):
        return False

    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except ValueError:
        return False


def cursor_up(lines: int) -> str:
    return f"\x1b[{lines}A" if lines > 0 else ""


def cursor_down(lines: int) -> str:
    return f"\x1b[{lines}B" if lines > 0 else ""
