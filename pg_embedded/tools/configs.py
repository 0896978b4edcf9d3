"""Typed configurations for the PostgreSQL command-line utilities.

Every field is optional unless noted; a field left at its default adds nothing
to the command line. Booleans become bare long options, strings and integers
become ``--option=value`` pairs and tuples repeat their option once per item.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..models import ConnectionConfig

PathLike = str | Path


class ToolKind(str, Enum):
    """Supported utilities; the value is the executable name."""

    PG_DUMP = "pg_dump"
    PG_DUMPALL = "pg_dumpall"
    PG_RESTORE = "pg_restore"
    PG_BASEBACKUP = "pg_basebackup"
    PG_REWIND = "pg_rewind"
    PSQL = "psql"
    PG_ISREADY = "pg_isready"


class PgDumpFormat(str, Enum):
    PLAIN = "p"
    CUSTOM = "c"
    DIRECTORY = "d"
    TAR = "t"


class PgRestoreFormat(str, Enum):
    CUSTOM = "c"
    DIRECTORY = "d"
    TAR = "t"


class PgBasebackupFormat(str, Enum):
    PLAIN = "p"
    TAR = "t"


class PgBasebackupCheckpoint(str, Enum):
    FAST = "fast"
    SPREAD = "spread"


class PgBasebackupWalMethod(str, Enum):
    NONE = "none"
    FETCH = "fetch"
    STREAM = "stream"


@dataclass(frozen=True, slots=True)
class PgDumpConfig:
    """Options for ``pg_dump``."""

    data_only: bool = False
    clean: bool = False
    create: bool = False
    extension: str | None = None
    encoding: str | None = None
    file: PathLike | None = None
    format: PgDumpFormat | None = None
    jobs: int | None = None
    schema: str | None = None
    exclude_schema: str | None = None
    no_owner: bool = False
    schema_only: bool = False
    superuser: str | None = None
    table: str | None = None
    exclude_table: str | None = None
    verbose: bool = False
    no_privileges: bool = False
    compression: int | str | None = None
    binary_upgrade: bool = False
    column_inserts: bool = False
    attribute_inserts: bool = False
    disable_dollar_quoting: bool = False
    disable_triggers: bool = False
    enable_row_security: bool = False
    inserts: bool = False
    no_comments: bool = False
    no_publications: bool = False
    no_security_labels: bool = False
    no_subscriptions: bool = False
    no_table_access_method: bool = False
    no_tablespaces: bool = False
    no_toast_compression: bool = False
    no_unlogged_table_data: bool = False
    on_conflict_do_nothing: bool = False
    quote_all_identifiers: bool = False
    rows_per_insert: int | None = None
    snapshot: str | None = None
    strict_names: bool = False
    use_set_session_authorization: bool = False
    # When set the dump goes to stdout and ``file`` is ignored.
    to_stdout: bool = False
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PgDumpallConfig:
    """Options for ``pg_dumpall``."""

    file: PathLike | None = None
    globals_only: bool = False
    roles_only: bool = False
    tablespaces_only: bool = False
    verbose: bool = False
    clean: bool = False
    no_owner: bool = False
    no_privileges: bool = False
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PgRestoreConfig:
    """Options for ``pg_restore``; ``file`` is the archive to restore and is required."""

    file: PathLike = ""
    format: PgRestoreFormat | None = None
    clean: bool = False
    create: bool = False
    exit_on_error: bool = False
    jobs: int | None = None
    single_transaction: bool = False
    verbose: bool = False
    data_only: bool = False
    schema_only: bool = False
    superuser: str | None = None
    table: tuple[str, ...] = ()
    trigger: tuple[str, ...] = ()
    no_owner: bool = False
    no_privileges: bool = False
    if_exists: bool = False
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PgBasebackupConfig:
    """Options for ``pg_basebackup``; ``pgdata`` is the required output directory."""

    pgdata: PathLike = ""
    format: PgBasebackupFormat | None = None
    verbose: bool = False
    checkpoint: PgBasebackupCheckpoint | None = None
    create_slot: bool = False
    slot: str | None = None
    max_rate: str | None = None
    wal_method: PgBasebackupWalMethod | None = None
    progress: bool = False
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PgRewindConfig:
    """Options for ``pg_rewind``; ``target_pgdata`` is required."""

    target_pgdata: PathLike = ""
    source_pgdata: PathLike | None = None
    source_server: str | None = None
    source_instance: ConnectionConfig | None = None
    dry_run: bool = False
    progress: bool = False
    debug: bool = False
    restore_target_wal: bool = False
    auto_configure_wal: bool = False
    wal_archive_dir: PathLike | None = None
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PsqlConfig:
    """Options for ``psql``; exactly one of ``command`` or ``file`` is run."""

    command: str | None = None
    file: PathLike | None = None
    list: bool = False
    variables: tuple[tuple[str, str], ...] = ()
    version: bool = False
    no_psqlrc: bool = False
    single_transaction: bool = False
    echo_all: bool = False
    echo_errors: bool = False
    echo_queries: bool = False
    echo_hidden: bool = False
    log_file: PathLike | None = None
    no_readline: bool = False
    output: PathLike | None = None
    quiet: bool = False
    single_step: bool = False
    single_line: bool = False
    no_align: bool = False
    csv: bool = False
    field_separator: str | None = None
    html: bool = False
    pset: tuple[tuple[str, str], ...] = ()
    record_separator: str | None = None
    tuples_only: bool = False
    table_attr: str | None = None
    expanded: bool = False
    field_separator_zero: bool = False
    record_separator_zero: bool = False
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PgIsReadyConfig:
    """Options for ``pg_isready``; ``timeout`` is the utility's own connection timeout."""

    timeout: int | None = None
    quiet: bool = False
    dbname: str | None = None


ToolConfig = (
    PgDumpConfig
    | PgDumpallConfig
    | PgRestoreConfig
    | PgBasebackupConfig
    | PgRewindConfig
    | PsqlConfig
    | PgIsReadyConfig
)


__all__ = [
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
    "ToolConfig",
    "ToolKind",
]
