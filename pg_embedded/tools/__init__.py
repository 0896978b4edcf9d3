"""Invocation of the PostgreSQL command-line utilities."""

from __future__ import annotations

from .commands import PASSWORD_ENV, ToolCommand, build_command, executable_path, rewind_source_server
from .configs import (
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
    ToolConfig,
    ToolKind,
)
from .invoker import ToolInvoker, run_tool
from .rewind import prepare_rewind_target

__all__ = [
    "PASSWORD_ENV",
    "PgBasebackupCheckpoint",
    "PgBasebackupConfig",
    "PgBasebackupFormat",
    "PgBasebackupWalMethod",
    "PgDumpConfig",
    "PgDumpFormat",
    "PgDumpallConfig",
    "PgIsReadyConfig",
    "PgRestoreConfig",
    "PgRestoreFormat",
    "PgRewindConfig",
    "PsqlConfig",
    "ToolCommand",
    "ToolConfig",
    "ToolInvoker",
    "ToolKind",
    "build_command",
    "executable_path",
    "prepare_rewind_target",
    "rewind_source_server",
    "run_tool",
]
