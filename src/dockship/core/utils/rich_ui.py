"""
Rich logging support for dockship.

Provides a Rich handler for log output when DOCKSHIP_RICH_UI is enabled.
"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler


def is_rich_enabled() -> bool:
    """Check if Rich log output should be enabled based on environment"""
    return os.environ.get("DOCKSHIP_RICH_UI", "false").lower() in ("true", "1", "yes")


def get_rich_handler(console: Console = None) -> logging.Handler:
    """Create a Rich handler writing to stderr so sinks on stdout stay clean"""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


class RichLoggingFilter(logging.Filter):
    """Drop debug records from the stream relays while Rich output is active"""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG:
            return True
        return not record.name.startswith("dockship.build.relay")
