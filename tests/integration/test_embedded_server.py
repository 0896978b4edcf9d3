"""End-to-end tests against a real PostgreSQL installation, skipped when none is available."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest

from pg_embedded import PostgresInstance, server
from pg_embedded.errors import DatabaseError, NotFoundError, StateError, ToolExecutionError
from pg_embedded.models import ConnectionConfig, InstanceState
from pg_embedded.tools import PgDumpConfig, PgIsReadyConfig, ToolInvoker, ToolKind


def _installation_available() -> bool:
    try:
        server.find_installation()
    except NotFoundError:
        return False
    return True


pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        sys.platform != "win32" and os.geteuid() == 0,
        reason="initdb refuses to run as root",
    ),
    pytest.mark.skipif(not _installation_available(), reason="no PostgreSQL installation found"),
]


@pytest.fixture(scope="module")
def instance():  # type: ignore[no-untyped-def]
    pg = PostgresInstance(port=0, timeout=60)
    pg.start()
    yield pg
    pg.cleanup()


def test_end_to_end_scenario(instance: PostgresInstance) -> None:
    assert instance.state is InstanceState.RUNNING
    assert instance.connection_info.port > 0
    assert instance.is_healthy() is True

    instance.create_database("scenario_db")
    assert instance.database_exists("scenario_db") is True
    with pytest.raises(DatabaseError, match="already exists"):
        instance.create_database("scenario_db")
    instance.drop_database("scenario_db")
    assert instance.database_exists("scenario_db") is False
    instance.drop_database("scenario_db")


def test_json_and_structured_paths_agree(instance: PostgresInstance) -> None:
    sql = "SELECT 1 AS a, 'text' AS b, NULL AS c, 2.5 AS d"

    as_json = instance.execute_sql_json(sql)
    structured = instance.execute_sql_structured(sql)

    assert as_json.data == structured.data
    assert json.loads(as_json.data) == [{"a": 1, "b": "text", "c": None, "d": 2.5}]
    assert as_json.row_count == structured.row_count == 1


def test_zero_rows(instance: PostgresInstance) -> None:
    result = instance.execute_sql_json("SELECT 1 AS a WHERE false")

    assert result.data == "[]"
    assert result.row_count == 0


def test_errors_carry_server_message(instance: PostgresInstance) -> None:
    with pytest.raises(ToolExecutionError, match="does not exist"):
        instance.execute_sql_json("SELECT * FROM no_such_table")


def test_write_statements_report_counts(instance: PostgresInstance) -> None:
    instance.execute_sql("CREATE TABLE IF NOT EXISTS counted (id int)")

    result = instance.execute_sql_structured("INSERT INTO counted SELECT generate_series(1, 3)")

    assert result.data is None
    assert result.row_count == 3


def test_dump_contains_schema(instance: PostgresInstance) -> None:
    instance.execute_sql("CREATE TABLE IF NOT EXISTS dumped (id int)")

    text = instance.dump_to_string(PgDumpConfig(schema_only=True))

    assert "CREATE TABLE public.dumped" in text


def test_unreachable_target_returns_exit_code(instance: PostgresInstance) -> None:
    invoker = ToolInvoker(instance.program_dir)
    connection = ConnectionConfig(host="127.0.0.1", port=server.free_port("127.0.0.1"), username="postgres")

    result = invoker.run(ToolKind.PG_ISREADY, PgIsReadyConfig(timeout=1), connection)

    assert result.exit_code != 0


def test_stop_and_restart(tmp_path: Path) -> None:
    pg = PostgresInstance(port=0, data_dir=tmp_path / "data", timeout=60)
    try:
        pg.start()
        pg.stop()
        assert pg.is_healthy() is False
        assert pg.is_connection_cache_valid() is False
        with pytest.raises(StateError):
            pg.connection_info
        pg.start()
        assert pg.is_healthy() is True
    finally:
        pg.cleanup()
    assert not (tmp_path / "data").exists()
