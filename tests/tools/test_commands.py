"""Tests for translating tool configurations into command lines."""

from __future__ import annotations

from pathlib import Path

import pytest

from pg_embedded.errors import ValidationError
from pg_embedded.models import ConnectionConfig
from pg_embedded.tools import (
    PgBasebackupConfig,
    PgBasebackupWalMethod,
    PgDumpallConfig,
    PgDumpConfig,
    PgDumpFormat,
    PgIsReadyConfig,
    PgRestoreConfig,
    PgRestoreFormat,
    PgRewindConfig,
    PsqlConfig,
    ToolKind,
    build_command,
    rewind_source_server,
)

BIN = Path("/opt/pg/bin")
CONNECTION = ConnectionConfig(host="localhost", port=6001, username="postgres", password="secret", database="appdb")


def test_pg_dump_maps_connection_and_options() -> None:
    config = PgDumpConfig(
        clean=True,
        file="/tmp/out.dump",
        format=PgDumpFormat.CUSTOM,
        jobs=2,
        compression=9,
        rows_per_insert=100,
        no_owner=True,
    )

    command = build_command(ToolKind.PG_DUMP, config, CONNECTION, BIN)

    assert command.program.name in {"pg_dump", "pg_dump.exe"}
    assert command.args == (
        "--host=localhost",
        "--port=6001",
        "--username=postgres",
        "--dbname=appdb",
        "--clean",
        "--file=/tmp/out.dump",
        "--format=c",
        "--jobs=2",
        "--no-owner",
        "--compress=9",
        "--rows-per-insert=100",
    )


def test_password_only_travels_in_environment() -> None:
    command = build_command(ToolKind.PG_DUMP, PgDumpConfig(), CONNECTION, BIN)

    assert command.env == {"PGPASSWORD": "secret"}
    assert all("secret" not in arg for arg in command.args)


def test_pg_dump_to_stdout_ignores_file() -> None:
    command = build_command(ToolKind.PG_DUMP, PgDumpConfig(file="out.sql", to_stdout=True), CONNECTION, BIN)

    assert not any(arg.startswith("--file") for arg in command.args)


def test_pg_dump_boolean_flags_use_long_names() -> None:
    config = PgDumpConfig(
        schema_only=True,
        quote_all_identifiers=True,
        on_conflict_do_nothing=True,
        use_set_session_authorization=True,
    )

    args = build_command(ToolKind.PG_DUMP, config, CONNECTION, BIN).args

    assert "--schema-only" in args
    assert "--quote-all-identifiers" in args
    assert "--on-conflict-do-nothing" in args
    assert "--use-set-session-authorization" in args


def test_pg_dumpall_uses_database_option() -> None:
    config = PgDumpallConfig(globals_only=True, file="all.sql")

    args = build_command(ToolKind.PG_DUMPALL, config, CONNECTION, BIN).args

    assert args == (
        "--host=localhost",
        "--port=6001",
        "--username=postgres",
        "--database=appdb",
        "--file=all.sql",
        "--globals-only",
    )


def test_pg_restore_repeats_lists_and_ends_with_archive() -> None:
    config = PgRestoreConfig(
        file="backup.dump",
        format=PgRestoreFormat.TAR,
        table=("accounts", "orders"),
        trigger=("audit",),
        exit_on_error=True,
    )

    args = build_command(ToolKind.PG_RESTORE, config, CONNECTION, BIN).args

    assert "--format=t" in args
    assert args.count("--table=accounts") == 1
    assert "--table=orders" in args
    assert "--trigger=audit" in args
    assert "--exit-on-error" in args
    assert args[-1] == "backup.dump"


def test_pg_basebackup_has_no_database_option() -> None:
    config = PgBasebackupConfig(pgdata="/tmp/backup", wal_method=PgBasebackupWalMethod.STREAM, create_slot=True, slot="s1")

    args = build_command(ToolKind.PG_BASEBACKUP, config, CONNECTION, BIN).args

    assert not any(arg.startswith("--dbname") for arg in args)
    assert "--pgdata=/tmp/backup" in args
    assert "--wal-method=stream" in args
    assert "--create-slot" in args
    assert "--slot=s1" in args


def test_psql_command_mode() -> None:
    config = PsqlConfig(command="SELECT 1", no_psqlrc=True, variables=(("ON_ERROR_STOP", "1"),), csv=True)

    args = build_command(ToolKind.PSQL, config, CONNECTION, BIN).args

    assert "--no-psqlrc" in args
    assert "--set=ON_ERROR_STOP=1" in args
    assert "--csv" in args
    assert args[-1] == "--command=SELECT 1"


def test_psql_file_mode_and_pset() -> None:
    config = PsqlConfig(file=Path("/tmp/script.sql"), pset=(("border", "2"),), tuples_only=True)

    args = build_command(ToolKind.PSQL, config, CONNECTION, BIN).args

    assert "--pset=border=2" in args
    assert "--tuples-only" in args
    assert args[-1] == "--file=/tmp/script.sql"


def test_pg_isready_dbname_overrides_connection_database() -> None:
    config = PgIsReadyConfig(timeout=3, quiet=True, dbname="other")

    args = build_command(ToolKind.PG_ISREADY, config, CONNECTION, BIN).args

    assert args == (
        "--host=localhost",
        "--port=6001",
        "--username=postgres",
        "--dbname=other",
        "--timeout=3",
        "--quiet",
    )


def test_rewind_prefers_explicit_source_server() -> None:
    config = PgRewindConfig(target_pgdata="/data/target", source_server="host=primary port=5432", dry_run=True)

    command = build_command(ToolKind.PG_REWIND, config, CONNECTION, BIN)

    assert command.args == (
        "--target-pgdata=/data/target",
        "--dry-run",
        "--source-server=host=primary port=5432",
    )
    assert "PGPASSWORD" not in command.env


def test_rewind_builds_source_from_instance() -> None:
    source = ConnectionConfig(host="primary", port=5544, username="postgres", password="pw", database="postgres")
    config = PgRewindConfig(target_pgdata="/data/target", source_instance=source)

    command = build_command(ToolKind.PG_REWIND, config, CONNECTION, BIN)

    assert rewind_source_server(config, CONNECTION) == "host=primary port=5544 user=postgres dbname=postgres"
    assert command.args[-1] == "--source-server=host=primary port=5544 user=postgres dbname=postgres"
    assert command.env == {"PGPASSWORD": "pw"}


def test_rewind_falls_back_to_connection_without_database() -> None:
    config = PgRewindConfig(target_pgdata="/data/target")

    assert rewind_source_server(config, CONNECTION) == "host=localhost port=6001 user=postgres"


def test_rewind_with_source_pgdata_skips_fallback_server() -> None:
    config = PgRewindConfig(target_pgdata="/data/target", source_pgdata="/data/source")

    args = build_command(ToolKind.PG_REWIND, config, CONNECTION, BIN).args

    assert args == ("--target-pgdata=/data/target", "--source-pgdata=/data/source")


def test_rewind_password_stays_off_the_command_line() -> None:
    config = PgRewindConfig(target_pgdata="/data/target")

    command = build_command(ToolKind.PG_REWIND, config, CONNECTION, BIN)

    assert not any("secret" in arg or "password" in arg for arg in command.args)
    assert command.env == {"PGPASSWORD": "secret"}


def test_redacted_masks_inline_passwords() -> None:
    config = PgRewindConfig(target_pgdata="/data/target", source_server="host=primary password=hunter2")

    redacted = build_command(ToolKind.PG_REWIND, config, CONNECTION, BIN).redacted()

    assert "hunter2" not in redacted
    assert "password=***" in redacted


def test_mismatched_config_type_is_rejected() -> None:
    with pytest.raises(ValidationError):
        build_command(ToolKind.PG_DUMP, PsqlConfig(command="SELECT 1"), CONNECTION, BIN)
