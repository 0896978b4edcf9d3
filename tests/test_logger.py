"""Tests for the logging helper."""

from __future__ import annotations

import logging

import pytest

from pg_embedded.logger import TRACE, LogLevel, init_logger


@pytest.fixture(autouse=True)
def _restore_logger():  # type: ignore[no-untyped-def]
    logger = logging.getLogger("pg_embedded")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


def test_init_logger_attaches_one_handler() -> None:
    logger = init_logger(LogLevel.DEBUG)
    again = init_logger("warn")

    assert logger is again
    assert logger.level == logging.WARNING
    ours = [handler for handler in logger.handlers if getattr(handler, "_pg_embedded", False)]
    assert len(ours) == 1


def test_trace_is_below_debug() -> None:
    assert init_logger(LogLevel.TRACE).level == TRACE < logging.DEBUG


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        init_logger("loud")
