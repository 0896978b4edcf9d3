"""Lifecycle controller for one embedded PostgreSQL server."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any

from . import registry, server
from .connections import (
    MAINTENANCE_DATABASE,
    AsyncpgDatabaseAdmin,
    ConnectionCache,
    require_database_name,
)
from .errors import NotFoundError, StartupError, StateError, TimeoutError, ToolExecutionError
from .models import ConnectionConfig, ConnectionInfo, InstanceState, StructuredResult, ToolResult
from .query import ResultTransformer, require_sql
from .settings import Settings, config_fingerprint
from .tools import (
    PgBasebackupConfig,
    PgDumpallConfig,
    PgDumpConfig,
    PgIsReadyConfig,
    PgRestoreConfig,
    PgRewindConfig,
    PsqlConfig,
    ToolConfig,
    ToolInvoker,
    ToolKind,
)

LOG = logging.getLogger(__name__)

READY_POLL_INTERVAL = 0.1
HEALTH_CHECK_TIMEOUT = 2.0
CLEANUP_STOP_TIMEOUT = 5.0

_ERROR_ON_STOP = ("ON_ERROR_STOP", "1")


class PostgresInstance:
    """An embedded PostgreSQL server owned by this process.

    Construction only validates settings; nothing is spawned until ``start``.
    Instances register themselves so that any still running at interpreter
    exit are stopped and their temporary data directories removed.
    """

    def __init__(self, settings: Settings | None = None, **overrides: Any) -> None:
        if settings is None:
            settings = Settings(**overrides)
        elif overrides:
            settings = settings.with_overrides(**overrides)
        self._settings = settings
        self._instance_id = uuid.uuid4().hex
        self._state = InstanceState.STOPPED
        self._state_lock = threading.Lock()
        self._closed = False
        self._config_hash: str | None = None
        self._installation: server.Installation | None = None
        self._invoker: ToolInvoker | None = None
        self._transformer: ResultTransformer | None = None
        self._temp_dir: tempfile.TemporaryDirectory[str] | None = None
        self._data_dir: Path | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._port: int | None = None
        self._startup_time: float | None = None
        self._cache = ConnectionCache()
        self._admin = AsyncpgDatabaseAdmin(connect_timeout=min(settings.timeout, 10.0))
        registry.register(self)
        LOG.info("Created PostgreSQL instance %s (config %s)", self._instance_id, self.get_config_hash())

    def __repr__(self) -> str:
        return f"<PostgresInstance {self._instance_id} {self._state.value}>"

    def __enter__(self) -> PostgresInstance:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        if getattr(self, "_state_lock", None) is None:
            return
        try:
            self.cleanup()
        except Exception:
            pass

    # -- properties -------------------------------------------------------

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def state(self) -> InstanceState:
        return self._state

    @property
    def data_dir(self) -> Path | None:
        """Data directory in use, or None before the first start."""

        return self._data_dir

    @property
    def program_dir(self) -> Path:
        """The installation's ``bin`` directory; locates the installation on first use."""

        return self._locate().bin_dir

    @property
    def port(self) -> int | None:
        """Port the server is bound to while running."""

        return self._port if self._state is InstanceState.RUNNING else None

    def get_postgresql_version(self) -> str | None:
        return str(self._installation.version) if self._installation else None

    def get_config_hash(self) -> str:
        if self._config_hash is None:
            self._config_hash = config_fingerprint(self._settings)
        return self._config_hash

    def get_startup_time(self) -> float | None:
        """Seconds the last successful start took."""

        return self._startup_time

    # -- lifecycle --------------------------------------------------------

    def start(self, timeout: float | None = None) -> None:
        """Start the server and block until it accepts connections."""

        with self._state_lock:
            if self._closed:
                raise StateError("PostgreSQL instance has been cleaned up")
            if self._state is InstanceState.RUNNING:
                raise StateError("PostgreSQL instance is already running")
            if self._state is InstanceState.STARTING:
                raise StateError("PostgreSQL instance is already starting")
            if self._state is InstanceState.STOPPING:
                raise StateError("PostgreSQL instance is stopping")
            self._state = InstanceState.STARTING
        wait = timeout if timeout is not None else self._settings.timeout
        started = time.perf_counter()
        LOG.info("Starting PostgreSQL instance %s", self._instance_id)
        try:
            installation = self._setup()
            port = self._settings.port or server.free_port(self._settings.host)
            self._process = server.spawn_server(installation, self._data_dir, host=self._settings.host, port=port)
            self._wait_until_ready(port, wait)
            self._ensure_default_database(port)
        except BaseException:
            if self._abort_start():
                self._release()
            raise
        with self._state_lock:
            cancelled = self._closed
            if not cancelled:
                self._port = port
                self._startup_time = time.perf_counter() - started
                self._state = InstanceState.RUNNING
        if cancelled:
            self._abort_start()
            self._release()
            raise StateError("PostgreSQL instance was cleaned up while starting")
        LOG.info(
            "PostgreSQL instance %s running on %s:%s (%.2fs)",
            self._instance_id,
            self._settings.host,
            port,
            self._startup_time,
        )

    def start_with_timeout(self, seconds: float) -> None:
        self.start(timeout=seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the server; kills it and raises TimeoutError if it does not exit in time."""

        with self._state_lock:
            if self._state is InstanceState.STOPPED:
                raise StateError("PostgreSQL instance is already stopped")
            if self._state is InstanceState.STOPPING:
                raise StateError("PostgreSQL instance is already stopping")
            if self._state is InstanceState.STARTING:
                raise StateError("PostgreSQL instance is starting")
            self._state = InstanceState.STOPPING
            process = self._process
        wait = timeout if timeout is not None else self._settings.timeout
        graceful = True
        try:
            if process is not None:
                graceful = server.stop_server(process, wait)
        finally:
            with self._state_lock:
                self._process = None
                self._port = None
                self._cache.clear()
                self._state = InstanceState.STOPPED
        if not graceful:
            raise TimeoutError(f"PostgreSQL did not stop within {wait} seconds and was killed")
        LOG.info("Stopped PostgreSQL instance %s", self._instance_id)

    def stop_with_timeout(self, seconds: float) -> None:
        self.stop(timeout=seconds)

    def cleanup(self) -> None:
        """Release everything this instance owns; safe to call any number of times."""

        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            if self._state is InstanceState.STARTING:
                LOG.info("Cleanup of %s deferred until its start finishes", self._instance_id)
                return
            process = self._process
            self._process = None
            self._port = None
            self._state = InstanceState.STOPPED
        self._release(process)

    def _release(self, process: subprocess.Popen[bytes] | None = None) -> None:
        try:
            if process is not None:
                server.stop_server(process, CLEANUP_STOP_TIMEOUT)
        except Exception:
            LOG.warning("Failed to stop PostgreSQL instance %s during cleanup", self._instance_id, exc_info=True)
        self._cache.clear()
        self._startup_time = None
        try:
            self._admin.shutdown()
        except Exception:
            LOG.warning("Failed to stop database worker for %s", self._instance_id, exc_info=True)
        self._remove_data_dir()
        registry.unregister(self)
        LOG.info("Cleaned up PostgreSQL instance %s", self._instance_id)

    def promote(self) -> None:
        """Promote a standby server to primary."""

        self._require_running()
        installation = self._locate()
        result = server.run_pg_ctl(
            installation,
            "promote",
            "-D",
            str(self._data_dir),
            "-w",
            timeout=self._settings.timeout,
        )
        if not result.success:
            raise ToolExecutionError.from_result("pg_ctl promote", result)
        LOG.info("Promoted PostgreSQL instance %s", self._instance_id)

    # -- connection info --------------------------------------------------

    @property
    def connection_info(self) -> ConnectionInfo:
        self._require_running()
        return self._cache.get(self._settings, self._port)

    def clear_connection_cache(self) -> None:
        self._cache.clear()

    def is_connection_cache_valid(self) -> bool:
        return self._cache.is_valid()

    def is_healthy(self) -> bool:
        """True when the server is running and answers ``SELECT 1``."""

        try:
            if self._state is not InstanceState.RUNNING:
                return False
            process = self._process
            if process is None or process.poll() is not None:
                return False
            return self._admin.ping(self.connection_info, timeout=HEALTH_CHECK_TIMEOUT)
        except Exception:
            return False

    # -- databases --------------------------------------------------------

    def create_database(self, name: str) -> None:
        require_database_name(name)
        info = self.connection_info
        self._admin.create_database(info, name, timeout=self._settings.timeout)

    def drop_database(self, name: str) -> None:
        require_database_name(name)
        info = self.connection_info
        self._admin.drop_database(info, name, timeout=self._settings.timeout)

    def database_exists(self, name: str) -> bool:
        require_database_name(name)
        info = self.connection_info
        return self._admin.database_exists(info, name, timeout=self._settings.timeout)

    # -- queries ----------------------------------------------------------

    def execute_sql_json(self, sql: str, database: str | None = None) -> StructuredResult:
        require_sql(sql)
        connection = self._connection(database)
        return self._transformer.execute_sql_json(sql, connection, timeout=self._settings.timeout)

    def execute_sql_structured(self, sql: str, database: str | None = None) -> StructuredResult:
        require_sql(sql)
        connection = self._connection(database)
        return self._transformer.execute_sql_structured(sql, connection, timeout=self._settings.timeout)

    def execute_sql(self, sql: str, database: str | None = None, config: PsqlConfig | None = None) -> ToolResult:
        """Run SQL through psql; the result carries psql's exit code and output."""

        require_sql(sql)
        base = config or PsqlConfig()
        return self.run_tool(
            ToolKind.PSQL,
            _with_error_stop(base, command=sql, file=None),
            database=database,
        )

    def execute_sql_file(
        self,
        path: str | os.PathLike[str],
        database: str | None = None,
        config: PsqlConfig | None = None,
    ) -> ToolResult:
        if not Path(path).is_file():
            raise NotFoundError(f"SQL file not found: {path}")
        base = config or PsqlConfig()
        return self.run_tool(
            ToolKind.PSQL,
            _with_error_stop(base, command=None, file=Path(path)),
            database=database,
        )

    # -- utilities --------------------------------------------------------

    def run_tool(self, kind: ToolKind, config: ToolConfig, database: str | None = None) -> ToolResult:
        """Run any supported utility against this instance."""

        connection = self._connection(database)
        return self._invoker.run(kind, config, connection)

    def create_dump(self, config: PgDumpConfig | None = None, database: str | None = None) -> ToolResult:
        return self.run_tool(ToolKind.PG_DUMP, config or PgDumpConfig(), database)

    def dump_to_string(self, config: PgDumpConfig | None = None, database: str | None = None) -> str:
        """Return a dump's text; any ``file`` in the config is ignored."""

        base = config or PgDumpConfig()
        result = self.run_tool(
            ToolKind.PG_DUMP,
            replace(base, to_stdout=True),
            database,
        )
        if not result.success:
            raise ToolExecutionError.from_result("pg_dump", result)
        return result.stdout

    def create_dumpall(self, config: PgDumpallConfig | None = None) -> ToolResult:
        return self.run_tool(ToolKind.PG_DUMPALL, config or PgDumpallConfig())

    def create_restore(self, config: PgRestoreConfig, database: str | None = None) -> ToolResult:
        return self.run_tool(ToolKind.PG_RESTORE, config, database)

    def create_base_backup(self, config: PgBasebackupConfig) -> ToolResult:
        return self.run_tool(ToolKind.PG_BASEBACKUP, config)

    def create_rewind(self, config: PgRewindConfig, database: str | None = None) -> ToolResult:
        return self.run_tool(ToolKind.PG_REWIND, config, database)

    def check_ready(self, config: PgIsReadyConfig | None = None) -> bool:
        """Ask ``pg_isready`` whether the server accepts connections."""

        return self.run_tool(ToolKind.PG_ISREADY, config or PgIsReadyConfig(quiet=True)).success

    # -- internals --------------------------------------------------------

    def _require_running(self) -> None:
        if self._state is not InstanceState.RUNNING:
            raise StateError("PostgreSQL instance is not running")

    def _connection(self, database: str | None) -> ConnectionConfig:
        return ConnectionConfig.from_info(self.connection_info, database)

    def _locate(self) -> server.Installation:
        if self._installation is None:
            installation = server.find_installation(
                self._settings.installation_dir,
                self._settings.version_specifier(),
            )
            self._installation = installation
            self._invoker = ToolInvoker(installation.bin_dir)
            self._transformer = ResultTransformer(self._invoker)
        return self._installation

    def _setup(self) -> server.Installation:
        installation = self._locate()
        if self._data_dir is None:
            if self._settings.data_dir is not None:
                self._data_dir = Path(self._settings.data_dir)
            else:
                self._temp_dir = tempfile.TemporaryDirectory(prefix="pg-embedded-", ignore_cleanup_errors=True)
                self._data_dir = Path(self._temp_dir.name)
        if not server.is_initialized(self._data_dir):
            server.initdb(
                installation,
                self._data_dir,
                username=self._settings.username,
                password=self._settings.password,
                timeout=self._settings.setup_timeout,
            )
        return installation

    def _wait_until_ready(self, port: int, timeout: float) -> None:
        connection = ConnectionConfig(
            host=self._settings.host,
            port=port,
            username=self._settings.username,
            password=self._settings.password,
            database=MAINTENANCE_DATABASE,
        )
        probe = PgIsReadyConfig(timeout=1, quiet=True)
        deadline = time.monotonic() + timeout
        while True:
            returncode = self._process.poll()
            if returncode is not None:
                raise StartupError(
                    f"postgres exited with code {returncode} during startup\n{server.log_tail(self._data_dir)}"
                )
            if self._invoker.run(ToolKind.PG_ISREADY, probe, connection).success:
                return
            if time.monotonic() >= deadline:
                raise TimeoutError(f"PostgreSQL did not become ready within {timeout} seconds")
            time.sleep(READY_POLL_INTERVAL)

    def _ensure_default_database(self, port: int) -> None:
        name = self._settings.database_name
        if name == MAINTENANCE_DATABASE:
            return
        info = ConnectionInfo(
            host=self._settings.host,
            port=port,
            username=self._settings.username,
            password=self._settings.password,
            database_name=name,
        )
        if not self._admin.database_exists(info, name, timeout=self._settings.timeout):
            self._admin.create_database(info, name, timeout=self._settings.timeout)

    def _abort_start(self) -> bool:
        """Kill a partially started server; True when a cleanup is waiting on this start."""

        with self._state_lock:
            closed = self._closed
            process = self._process
            self._process = None
            self._port = None
            self._cache.clear()
            self._state = InstanceState.STOPPED
        if process is not None and process.poll() is None:
            process.kill()
            process.wait()
        LOG.warning("PostgreSQL instance %s failed to start", self._instance_id)
        return closed

    def _remove_data_dir(self) -> None:
        if self._settings.persistent:
            return
        try:
            if self._temp_dir is not None:
                self._temp_dir.cleanup()
                self._temp_dir = None
            elif self._data_dir is not None and self._data_dir.exists():
                shutil.rmtree(self._data_dir, ignore_errors=True)
        except Exception:
            LOG.warning("Failed to remove data directory %s", self._data_dir, exc_info=True)


def _with_error_stop(config: PsqlConfig, **changes: Any) -> PsqlConfig:
    variables = config.variables
    if not any(name == _ERROR_ON_STOP[0] for name, _ in variables):
        variables = (*variables, _ERROR_ON_STOP)
    return replace(config, variables=variables, **changes)


__all__ = ["PostgresInstance"]
