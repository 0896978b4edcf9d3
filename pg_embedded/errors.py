"""Exception hierarchy shared by every pg_embedded module."""

from __future__ import annotations

import builtins
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ToolResult


class PgEmbedError(RuntimeError):
    """Base class for errors raised by pg_embedded."""


class ConfigurationError(PgEmbedError, ValueError):
    """Raised when settings or a version constraint are invalid."""


class ValidationError(PgEmbedError, ValueError):
    """Raised when an argument fails validation before any I/O happens."""


class StateError(PgEmbedError):
    """Raised when an operation is not valid for the instance's current state."""


class TimeoutError(PgEmbedError, builtins.TimeoutError):
    """Raised when readiness, shutdown or a tool invocation exceeds its deadline."""


class StartupError(PgEmbedError):
    """Raised when the server cannot be initialised or exits during startup."""


class DatabaseError(PgEmbedError):
    """Raised when a database administration statement fails on the server."""


class NotFoundError(PgEmbedError, FileNotFoundError):
    """Raised when an executable, file or installation cannot be located."""


class ToolExecutionError(PgEmbedError):
    """Raised when a utility exits non-zero on a path that expects success."""

    def __init__(self, message: str, result: "ToolResult | None" = None) -> None:
        super().__init__(message)
        self.result = result

    @classmethod
    def from_result(cls, action: str, result: "ToolResult") -> "ToolExecutionError":
        stderr = result.stderr.strip() or result.stdout.strip() or "no output"
        return cls(f"{action} failed with exit code {result.exit_code}: {stderr}", result)


__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "NotFoundError",
    "PgEmbedError",
    "StartupError",
    "StateError",
    "TimeoutError",
    "ToolExecutionError",
    "ValidationError",
]
