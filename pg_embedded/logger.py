"""Convenience logging setup for scripts that embed PostgreSQL."""

from __future__ import annotations

import logging
import sys
from enum import Enum

LOGGER_NAME = "pg_embedded"
TRACE = 5

logging.addLevelName(TRACE, "TRACE")


class LogLevel(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    def to_logging(self) -> int:
        return _LEVELS[self]


_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.TRACE: TRACE,
}


def init_logger(level: LogLevel | str = LogLevel.INFO) -> logging.Logger:
    """Send pg_embedded records to stderr at ``level``.

    Calling it again only adjusts the level; the handler is attached once.
    """

    resolved = LogLevel(level.lower() if isinstance(level, str) else level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolved.to_logging())
    if not any(getattr(handler, "_pg_embedded", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        handler._pg_embedded = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


__all__ = ["LogLevel", "init_logger"]
