"""Subprocess execution of the PostgreSQL command-line utilities."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from ..errors import NotFoundError, TimeoutError, ValidationError
from ..models import ConnectionConfig, ToolResult
from .commands import ToolCommand, build_command
from .configs import (
    PgBasebackupConfig,
    PgIsReadyConfig,
    PgRestoreConfig,
    PgRewindConfig,
    PsqlConfig,
    ToolConfig,
    ToolKind,
)
from .rewind import prepare_rewind_target

LOG = logging.getLogger(__name__)

# Extra headroom for pg_isready beyond its own connection timeout.
_ISREADY_GRACE_SECONDS = 5.0


class ToolInvoker:
    """Runs utilities from one installation's ``bin`` directory and captures their output."""

    def __init__(self, program_dir: Path) -> None:
        self._program_dir = Path(program_dir)

    @property
    def program_dir(self) -> Path:
        return self._program_dir

    def command(self, kind: ToolKind, config: ToolConfig, connection: ConnectionConfig) -> ToolCommand:
        """Validate inputs and build the command line that ``run`` would execute."""

        _require_inputs(kind, config, connection)
        return build_command(kind, config, connection, self._program_dir)

    def run(self, kind: ToolKind, config: ToolConfig, connection: ConnectionConfig) -> ToolResult:
        """Run the utility; a non-zero exit code is reported in the result, not raised."""

        command = self.command(kind, config, connection)
        if not command.program.exists():
            raise NotFoundError(f"{kind.value} executable not found at {command.program}")
        if isinstance(config, PsqlConfig) and config.command is None and config.file is not None:
            if not Path(config.file).is_file():
                raise NotFoundError(f"SQL file not found: {config.file}")
        if isinstance(config, PgRewindConfig) and config.auto_configure_wal:
            prepare_rewind_target(config)
        return self.execute(command, timeout=_timeout_for(config))

    def execute(self, command: ToolCommand, *, timeout: float | None = None) -> ToolResult:
        LOG.debug("Running %s", command.redacted())
        env = dict(os.environ)
        env.update(command.env)
        try:
            completed = subprocess.run(
                command.argv(),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise TimeoutError(f"{command.kind.value} did not finish within {timeout} seconds") from exc
        except FileNotFoundError as exc:
            raise NotFoundError(f"{command.kind.value} executable not found at {command.program}") from exc
        result = ToolResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if not result.success:
            LOG.debug("%s exited with code %s", command.kind.value, result.exit_code)
        return result


def run_tool(
    program_dir: Path,
    kind: ToolKind,
    config: ToolConfig,
    connection: ConnectionConfig,
) -> ToolResult:
    """Convenience wrapper for a one-off invocation."""

    return ToolInvoker(program_dir).run(kind, config, connection)


def _require_inputs(kind: ToolKind, config: ToolConfig, connection: ConnectionConfig) -> None:
    if kind is not ToolKind.PG_REWIND:
        missing = [name for name in ("host", "port", "username") if getattr(connection, name) in (None, "")]
        if missing:
            raise ValidationError(f"Connection is missing required field(s): {', '.join(missing)}")
    if isinstance(config, PgRestoreConfig) and not str(config.file).strip():
        raise ValidationError("pg_restore requires an archive file")
    if isinstance(config, PgBasebackupConfig) and not str(config.pgdata).strip():
        raise ValidationError("pg_basebackup requires a pgdata directory")
    if isinstance(config, PgRewindConfig) and not str(config.target_pgdata).strip():
        raise ValidationError("pg_rewind requires a target_pgdata directory")
    if isinstance(config, PsqlConfig):
        if config.command is not None and not config.command.strip():
            raise ValidationError("SQL command cannot be empty")
        if config.command is None and (config.file is None or not str(config.file).strip()):
            raise ValidationError("psql requires a command or a file")


def _timeout_for(config: ToolConfig) -> float | None:
    if isinstance(config, PgIsReadyConfig):
        if config.timeout is None:
            return None
        return config.timeout + _ISREADY_GRACE_SECONDS
    return config.timeout


__all__ = ["ToolInvoker", "run_tool"]
