"""
Logging setup for the bbscope CLI.

Library modules log through the standard ``logging`` module; the CLI routes
those records into a single loguru sink on stderr whose level follows the
--verbose/--quiet flags.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def log_level(verbose: bool = False, quiet: bool = False) -> str:
    """Map the CLI verbosity flags to a loguru level name."""
    if verbose:
        return "DEBUG"
    if quiet:
        return "ERROR"
    return "WARNING"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send stdlib logging to a loguru stderr sink at the requested level."""
    level = log_level(verbose, quiet)

    # Remove default loguru handler
    logger.remove()

    if verbose:
        fmt = "<level>{level: <7}</level> <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    else:
        fmt = "<level>{level}</level>: {message}"
    logger.add(sys.stderr, level=level, colorize=True, format=fmt)

    # Intercept standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.DEBUG if verbose else logging.WARNING)
