"""Tests for pg_rewind target preparation."""

from __future__ import annotations

from pathlib import Path

from pg_embedded.tools import PgRewindConfig, prepare_rewind_target
from pg_embedded.tools.rewind import WAL_CONFIG_MARKER, wal_archive_dir


def test_archive_defaults_next_to_target(tmp_path: Path) -> None:
    config = PgRewindConfig(target_pgdata=tmp_path / "replica")

    assert wal_archive_dir(config) == tmp_path / "wal_archive"


def test_explicit_archive_dir_wins(tmp_path: Path) -> None:
    config = PgRewindConfig(target_pgdata=tmp_path / "replica", wal_archive_dir=tmp_path / "archive")

    assert wal_archive_dir(config) == tmp_path / "archive"


def test_prepare_appends_settings_once(tmp_path: Path) -> None:
    target = tmp_path / "replica"
    target.mkdir()
    conf = target / "postgresql.conf"
    conf.write_text("max_connections = 20\n")
    config = PgRewindConfig(target_pgdata=target, wal_archive_dir=tmp_path / "archive")

    archive = prepare_rewind_target(config)
    prepare_rewind_target(config)

    content = conf.read_text()
    assert archive.is_dir()
    assert content.startswith("max_connections = 20\n")
    assert content.count(WAL_CONFIG_MARKER) == 1
    for line in (
        "wal_log_hints = on",
        "archive_mode = on",
        "wal_level = replica",
        "max_wal_senders = 3",
    ):
        assert line in content
    assert f"archive_command = 'cp \"%p\" \"{archive.as_posix()}/%f\"'" in content
    assert f"restore_command = 'cp \"{archive.as_posix()}/%f\" \"%p\"'" in content


def test_prepare_without_config_file_only_creates_archive(tmp_path: Path) -> None:
    target = tmp_path / "replica"
    target.mkdir()
    config = PgRewindConfig(target_pgdata=target)

    archive = prepare_rewind_target(config)

    assert archive.is_dir()
    assert not (target / "postgresql.conf").exists()
