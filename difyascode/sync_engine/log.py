"""Loguru sink setup for the command line.

Everything, including records from httpx and other stdlib ``logging`` users,
ends up in one loguru sink on stderr; stdout stays free for command output.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_OPERATOR_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"

_VERBOSE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_VERBOSE_LEVELS = frozenset({"TRACE", "DEBUG"})


class _InterceptHandler(logging.Handler):
    """Forward stdlib records to loguru, keeping the original call-site."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    """Route all logging to stderr at *level*.  Call once at CLI startup.

    ``DEBUG`` and ``TRACE`` add timestamps with milliseconds, call-sites and
    extended backtraces.  Variable values are never rendered in tracebacks,
    since they may hold account passwords or session tokens.
    """
    level = level.upper()
    verbose = level in _VERBOSE_LEVELS

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_VERBOSE_FORMAT if verbose else _OPERATOR_FORMAT,
        backtrace=verbose,
        diagnose=False,
    )
    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # One line per console request is only useful when debugging.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    logger.debug("Logging initialised (level={})", level)
