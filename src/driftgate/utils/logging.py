import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "driftgate"
LOG_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_handler: Optional[RichHandler] = None


def configure_logging(level: str = "INFO", console: Optional[Console] = None) -> logging.Logger:
    """
    Attach a single rich handler (stderr, ISO timestamps) to the package logger.

    Calling it again only updates the level, so repeated CLI invocations in one
    process do not stack handlers.
    """
    global _handler

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    if _handler is None:
        _handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            log_time_format=LOG_TIME_FORMAT,
        )
        _handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    if _handler not in logger.handlers:
        logger.addHandler(_handler)
        logger.propagate = False

    _handler.setLevel(level.upper())
    return logger
