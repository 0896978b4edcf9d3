"""Preparation of a ``pg_rewind`` target directory."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .configs import PgRewindConfig

LOG = logging.getLogger(__name__)

WAL_CONFIG_MARKER = "# Auto-configured for pg_rewind"


def wal_archive_dir(config: PgRewindConfig) -> Path:
    """Archive directory for the rewind: explicit, or ``wal_archive`` beside the target."""

    if config.wal_archive_dir:
        return Path(config.wal_archive_dir)
    return Path(config.target_pgdata).parent / "wal_archive"


def wal_settings(archive_dir: Path) -> str:
    archive = archive_dir.as_posix()
    return (
        f"\n{WAL_CONFIG_MARKER}\n"
        "wal_log_hints = on\n"
        "archive_mode = on\n"
        f"archive_command = 'cp \"%p\" \"{archive}/%f\"'\n"
        f"restore_command = 'cp \"{archive}/%f\" \"%p\"'\n"
        "wal_level = replica\n"
        "max_wal_senders = 3\n"
    )


def prepare_rewind_target(config: PgRewindConfig) -> Path:
    """Create the WAL archive and append rewind settings to the target's postgresql.conf.

    The settings are written once; a second call finds the marker and leaves the
    file alone. The target server has to be restarted before the new settings
    take effect. Returns the archive directory.
    """

    archive_dir = wal_archive_dir(config)
    os.makedirs(archive_dir, exist_ok=True)
    config_path = Path(config.target_pgdata) / "postgresql.conf"
    if not config_path.exists():
        LOG.warning("No postgresql.conf in %s; skipping WAL configuration", config.target_pgdata)
        return archive_dir
    content = config_path.read_text(encoding="utf-8")
    if WAL_CONFIG_MARKER in content:
        LOG.debug("WAL settings already present in %s", config_path)
        return archive_dir
    with config_path.open("a", encoding="utf-8") as handle:
        handle.write(wal_settings(archive_dir))
    LOG.info("Configured WAL archiving for pg_rewind in %s (archive %s)", config_path, archive_dir)
    return archive_dir


__all__ = ["WAL_CONFIG_MARKER", "prepare_rewind_target", "wal_archive_dir", "wal_settings"]
