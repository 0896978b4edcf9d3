"""Pure translation of tool configurations into command lines."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Mapping

from ..errors import ValidationError
from ..models import ConnectionConfig
from .configs import (
    PgBasebackupConfig,
    PgDumpallConfig,
    PgDumpConfig,
    PgIsReadyConfig,
    PgRestoreConfig,
    PgRewindConfig,
    PsqlConfig,
    ToolConfig,
    ToolKind,
)

PASSWORD_ENV = "PGPASSWORD"
_PASSWORD_PATTERN = re.compile(r"(password=)('(?:[^'\\]|\\.)*'|\S+)")

_CONFIG_TYPES: Mapping[ToolKind, type] = {
    ToolKind.PG_DUMP: PgDumpConfig,
    ToolKind.PG_DUMPALL: PgDumpallConfig,
    ToolKind.PG_RESTORE: PgRestoreConfig,
    ToolKind.PG_BASEBACKUP: PgBasebackupConfig,
    ToolKind.PG_REWIND: PgRewindConfig,
    ToolKind.PSQL: PsqlConfig,
    ToolKind.PG_ISREADY: PgIsReadyConfig,
}

# Fields whose option name differs from the field name.
_RENAMED: Mapping[ToolKind, Mapping[str, str]] = {
    ToolKind.PG_DUMP: {"compression": "--compress"},
    ToolKind.PSQL: {"variables": "--set"},
}

# Fields consumed elsewhere (positionals, pre-flight inputs, subprocess options).
_NOT_OPTIONS: Mapping[ToolKind, frozenset[str]] = {
    ToolKind.PG_DUMP: frozenset({"to_stdout", "timeout"}),
    ToolKind.PG_DUMPALL: frozenset({"timeout"}),
    ToolKind.PG_RESTORE: frozenset({"file", "timeout"}),
    ToolKind.PG_BASEBACKUP: frozenset({"timeout"}),
    ToolKind.PG_REWIND: frozenset(
        {"source_server", "source_instance", "auto_configure_wal", "wal_archive_dir", "timeout"}
    ),
    ToolKind.PSQL: frozenset({"command", "file", "timeout"}),
    ToolKind.PG_ISREADY: frozenset({"dbname"}),
}

# Connection options each utility accepts, in emission order.
_CONNECTION_OPTIONS: Mapping[ToolKind, tuple[str, ...]] = {
    ToolKind.PG_DUMP: ("host", "port", "username", "dbname"),
    ToolKind.PG_DUMPALL: ("host", "port", "username", "database"),
    ToolKind.PG_RESTORE: ("host", "port", "username", "dbname"),
    ToolKind.PG_BASEBACKUP: ("host", "port", "username"),
    ToolKind.PG_REWIND: (),
    ToolKind.PSQL: ("host", "port", "username", "dbname"),
    ToolKind.PG_ISREADY: ("host", "port", "username", "dbname"),
}


@dataclass(frozen=True, slots=True)
class ToolCommand:
    """A fully resolved invocation: executable, arguments and environment overlay."""

    kind: ToolKind
    program: Path
    args: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)

    def argv(self) -> list[str]:
        return [str(self.program), *self.args]

    def redacted(self) -> str:
        """Command line for logs with any inline password masked."""

        return _PASSWORD_PATTERN.sub(r"\1***", " ".join(self.argv()))


def executable_path(program_dir: Path, kind: ToolKind | str) -> Path:
    name = kind.value if isinstance(kind, ToolKind) else kind
    if sys.platform == "win32":
        name += ".exe"
    return Path(program_dir) / name


def build_command(
    kind: ToolKind,
    config: ToolConfig,
    connection: ConnectionConfig,
    program_dir: Path,
) -> ToolCommand:
    """Translate a configuration into a command without touching the filesystem."""

    expected = _CONFIG_TYPES[kind]
    if not isinstance(config, expected):
        raise ValidationError(f"{kind.value} expects {expected.__name__}, got {type(config).__name__}")
    args: list[str] = []
    args.extend(_connection_args(kind, config, connection))
    args.extend(_option_args(kind, config))
    args.extend(_extra_args(kind, config, connection))
    env: dict[str, str] = {}
    password = _password_for(config, connection)
    if password is not None:
        env[PASSWORD_ENV] = password
    return ToolCommand(kind=kind, program=executable_path(program_dir, kind), args=tuple(args), env=env)


def rewind_source_server(config: PgRewindConfig, connection: ConnectionConfig) -> str | None:
    """Pick the ``--source-server`` value: explicit, then a source instance, then the connection."""

    if config.source_server:
        return config.source_server
    source = replace(_rewind_source(config, connection), password=None)
    return source.to_conninfo() or None


def _rewind_source(config: PgRewindConfig, connection: ConnectionConfig) -> ConnectionConfig:
    if config.source_instance is not None:
        return config.source_instance
    return ConnectionConfig(
        host=connection.host,
        port=connection.port,
        username=connection.username,
        password=connection.password,
    )


def _uses_source_server(config: PgRewindConfig) -> bool:
    explicit = bool(config.source_server) or config.source_instance is not None
    return explicit or not config.source_pgdata


def _password_for(config: ToolConfig, connection: ConnectionConfig) -> str | None:
    """The password to export as PGPASSWORD; never placed on the command line."""

    if not isinstance(config, PgRewindConfig):
        return connection.password
    if config.source_server or not _uses_source_server(config):
        return None
    return _rewind_source(config, connection).password


def _connection_args(kind: ToolKind, config: ToolConfig, connection: ConnectionConfig) -> list[str]:
    args: list[str] = []
    for option in _CONNECTION_OPTIONS[kind]:
        if option in ("dbname", "database"):
            value = connection.database
            if isinstance(config, PgIsReadyConfig) and config.dbname:
                value = config.dbname
        else:
            value = getattr(connection, option)
        if value is not None:
            args.append(f"--{option}={value}")
    return args


def _option_args(kind: ToolKind, config: ToolConfig) -> list[str]:
    renamed = _RENAMED.get(kind, {})
    skipped = _NOT_OPTIONS[kind]
    args: list[str] = []
    for item in fields(config):
        name = item.name
        if name in skipped:
            continue
        if kind is ToolKind.PG_DUMP and name == "file" and config.to_stdout:
            continue
        value = getattr(config, name)
        option = renamed.get(name) or "--" + name.replace("_", "-")
        args.extend(_render(option, value))
    return args


def _render(option: str, value: object) -> list[str]:
    if value is None or value is False or value == "" or value == ():
        return []
    if value is True:
        return [option]
    if isinstance(value, Enum):
        return [f"{option}={value.value}"]
    if isinstance(value, tuple):
        rendered: list[str] = []
        for item in value:
            if isinstance(item, tuple):
                name, item_value = item
                rendered.append(f"{option}={name}={item_value}")
            else:
                rendered.append(f"{option}={item}")
        return rendered
    if isinstance(value, os.PathLike):
        value = os.fspath(value)
    return [f"{option}={value}"]


def _extra_args(kind: ToolKind, config: ToolConfig, connection: ConnectionConfig) -> list[str]:
    if isinstance(config, PgRestoreConfig):
        return [os.fspath(config.file)]
    if isinstance(config, PgRewindConfig):
        if not _uses_source_server(config):
            return []
        source = rewind_source_server(config, connection)
        return [f"--source-server={source}"] if source else []
    if isinstance(config, PsqlConfig):
        if config.command is not None:
            return [f"--command={config.command}"]
        if config.file is not None:
            return [f"--file={os.fspath(config.file)}"]
    return []


__all__ = [
    "PASSWORD_ENV",
    "ToolCommand",
    "build_command",
    "executable_path",
    "rewind_source_server",
]
