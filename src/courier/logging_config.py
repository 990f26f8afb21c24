"""Logging setup for the courier package logger."""

import logging
import sys
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from rich.console import Console

LOGGER_NAME = "courier"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _console_handler(format_string: str, console: Optional["Console"]) -> logging.Handler:
    if console is not None:
        from rich.logging import RichHandler

        handler: logging.Handler = RichHandler(console=console, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(format_string))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    force: bool = False,
    console: Optional["Console"] = None,
) -> logging.Logger:
    """
    Configure the ``courier`` logger.

    Console records go to stderr so response bodies written to stdout stay
    clean. Calling again without ``force`` keeps the existing handlers and
    only updates their level.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives the same records
        format_string: Format for plain and file handlers
        force: Replace handlers that are already installed
        console: Rich console to log through instead of a plain stream handler

    Returns:
        The configured logger
    """
    format_string = format_string or DEFAULT_FORMAT
    numeric_level = getattr(logging, level.upper(), logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    if force or not logger.handlers:
        logger.handlers.clear()
        logger.addHandler(_console_handler(format_string, console))
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(format_string))
            logger.addHandler(file_handler)

    for handler in logger.handlers:
        handler.setLevel(numeric_level)

    logger.propagate = False
    return logger
