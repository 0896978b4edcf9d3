"""Embedded PostgreSQL servers for applications and test suites."""

from __future__ import annotations

from .connections import CACHE_TTL_SECONDS, ConnectionCache
from .errors import (
    ConfigurationError,
    DatabaseError,
    NotFoundError,
    PgEmbedError,
    StartupError,
    StateError,
    TimeoutError,
    ToolExecutionError,
    ValidationError,
)
from .instance import PostgresInstance
from .logger import LogLevel, init_logger
from .models import ConnectionConfig, ConnectionInfo, InstanceState, StructuredResult, ToolResult
from .query import ResultTransformer
from .registry import install_signal_handlers
from .settings import Settings, config_fingerprint, load_settings
from .tools import (
    PgBasebackupCheckpoint,
    PgBasebackupConfig,
    PgBasebackupFormat,
    PgBasebackupWalMethod,
    PgDumpallConfig,
    PgDumpConfig,
    PgDumpFormat,
    PgIsReadyConfig,
    PgRestoreConfig,
    PgRestoreFormat,
    PgRewindConfig,
    PsqlConfig,
    ToolInvoker,
    ToolKind,
    run_tool,
)

__all__ = [
    "CACHE_TTL_SECONDS",
    "ConfigurationError",
    "ConnectionCache",
    "ConnectionConfig",
    "ConnectionInfo",
    "DatabaseError",
    "InstanceState",
    "LogLevel",
    "NotFoundError",
    "PgBasebackupCheckpoint",
    "PgBasebackupConfig",
    "PgBasebackupFormat",
    "PgBasebackupWalMethod",
    "PgDumpConfig",
    "PgDumpFormat",
    "PgDumpallConfig",
    "PgEmbedError",
    "PgIsReadyConfig",
    "PgRestoreConfig",
    "PgRestoreFormat",
    "PgRewindConfig",
    "PostgresInstance",
    "PsqlConfig",
    "ResultTransformer",
    "Settings",
    "StartupError",
    "StateError",
    "StructuredResult",
    "TimeoutError",
    "ToolExecutionError",
    "ToolInvoker",
    "ToolKind",
    "ToolResult",
    "ValidationError",
    "config_fingerprint",
    "init_logger",
    "install_signal_handlers",
    "load_settings",
    "run_tool",
]
