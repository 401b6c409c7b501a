"""
Logging configuration.

Console output for humans goes through rich; progress and debug messages go
through the standard logging module so that ``--verbose`` can turn on the
DEBUG level without touching call sites.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(message)s"
DATE_FORMAT = "[%Y-%m-%d %H:%M:%S]"


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """
    Install a RichHandler on the root logger.

    Args:
        verbose: Enable DEBUG level output
        console: Console to write to (defaults to a stdout console)
    """
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(
        console=console or Console(),
        show_path=False,
        show_level=verbose,
        markup=False,
        rich_tracebacks=False,
        log_time_format=DATE_FORMAT,
    )
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler], force=True)

    # Keep third-party chatter out of deployment logs.
    for noisy in ("httpx", "asyncio", "multipart"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
