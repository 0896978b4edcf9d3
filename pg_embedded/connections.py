"""Connection descriptor caching and asyncpg-backed database administration."""

from __future__ import annotations

import asyncio
import builtins
import logging
import threading
import time
from typing import Any, Callable, Coroutine, TypeVar

import asyncpg

from .errors import DatabaseError, TimeoutError, ValidationError
from .models import ConnectionInfo
from .settings import Settings

LOG = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0
MAINTENANCE_DATABASE = "postgres"

T = TypeVar("T")


class ConnectionCache:
    """Holds the most recent connection descriptor for a limited time."""

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entry: ConnectionInfo | None = None
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, settings: Settings, port: int) -> ConnectionInfo:
        """Return the cached descriptor, rebuilding it once it has aged out."""

        with self._lock:
            if self._entry is not None and self._fresh(self._entry):
                return self._entry
            self._entry = ConnectionInfo(
                host=settings.host,
                port=port,
                username=settings.username,
                password=settings.password,
                database_name=settings.database_name,
                created_at=self._clock(),
            )
            LOG.debug("Cached connection info for %s", self._entry.safe_connection_string)
            return self._entry

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    def is_valid(self) -> bool:
        with self._lock:
            return self._entry is not None and self._fresh(self._entry)

    def _fresh(self, entry: ConnectionInfo) -> bool:
        return self._clock() - entry.created_at < self._ttl


def quote_identifier(name: str) -> str:
    """Quote an SQL identifier, doubling embedded quotes."""

    return '"' + name.replace('"', '""') + '"'


def require_database_name(name: str) -> str:
    if not name or not name.strip():
        raise ValidationError("Database name cannot be empty")
    return name


class AsyncpgDatabaseAdmin:
    """Runs administrative statements via asyncpg on a background event loop."""

    _EXISTS_QUERY = "SELECT 1 FROM pg_database WHERE datname = $1"

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self._connect_timeout = connect_timeout
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None

    def create_database(self, info: ConnectionInfo, name: str, *, timeout: float) -> None:
        self._run(self.acreate_database(info, name), timeout)

    def drop_database(self, info: ConnectionInfo, name: str, *, timeout: float) -> None:
        self._run(self.adrop_database(info, name), timeout)

    def database_exists(self, info: ConnectionInfo, name: str, *, timeout: float) -> bool:
        return self._run(self.adatabase_exists(info, name), timeout)

    def ping(self, info: ConnectionInfo, *, timeout: float) -> bool:
        """Return True when ``SELECT 1`` succeeds; never raises."""

        try:
            return self._run(self.aping(info), timeout)
        except Exception as exc:
            LOG.debug("Health probe failed: %s", exc)
            return False

    def shutdown(self) -> None:
        """Stop the background event loop."""

        with self._lock:
            loop, thread = self._loop, self._loop_thread
            self._loop = None
            self._loop_thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=1)
        if not thread.is_alive():
            loop.close()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._loop_thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="pg-embedded-asyncpg",
                    daemon=True,
                )
                self._loop_thread.start()
            return self._loop

    def _run(self, coro: Coroutine[Any, Any, T], timeout: float) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        try:
            return future.result(timeout=timeout)
        except builtins.TimeoutError as exc:
            future.cancel()
            raise TimeoutError(f"Database operation did not finish within {timeout} seconds") from exc

    async def acreate_database(self, info: ConnectionInfo, name: str) -> None:
        await self._execute(info, f"CREATE DATABASE {quote_identifier(name)}", name)
        LOG.info("Created database %s", name)

    async def adrop_database(self, info: ConnectionInfo, name: str) -> None:
        await self._execute(info, f"DROP DATABASE IF EXISTS {quote_identifier(name)}", name)
        LOG.info("Dropped database %s", name)

    async def _execute(self, info: ConnectionInfo, statement: str, name: str) -> None:
        conn = await self._connect(info)
        try:
            await conn.execute(statement)
        except asyncpg.DuplicateDatabaseError as exc:
            raise DatabaseError(f"Database '{name}' already exists") from exc
        except asyncpg.PostgresError as exc:
            raise DatabaseError(f"Statement failed for database '{name}': {exc}") from exc
        finally:
            try:
                await conn.close()
            except Exception:  # pragma: no cover - best effort
                pass

    async def adatabase_exists(self, info: ConnectionInfo, name: str) -> bool:
        conn = await self._connect(info)
        try:
            value = await conn.fetchval(self._EXISTS_QUERY, name)
        except asyncpg.PostgresError as exc:
            raise DatabaseError(f"Failed to look up database '{name}': {exc}") from exc
        finally:
            try:
                await conn.close()
            except Exception:  # pragma: no cover - best effort
                pass
        return value is not None

    async def aping(self, info: ConnectionInfo) -> bool:
        conn = await self._connect(info)
        try:
            return await conn.fetchval("SELECT 1") == 1
        finally:
            try:
                await conn.close()
            except Exception:  # pragma: no cover - best effort
                pass

    async def _connect(self, info: ConnectionInfo):
        try:
            return await asyncpg.connect(
                host=info.host,
                port=info.port,
                user=info.username,
                password=info.password,
                database=MAINTENANCE_DATABASE,
                timeout=self._connect_timeout,
            )
        except (OSError, asyncpg.PostgresError, asyncio.TimeoutError) as exc:
            raise DatabaseError(f"Failed to connect to {info.safe_connection_string}: {exc}") from exc


__all__ = [
    "AsyncpgDatabaseAdmin",
    "CACHE_TTL_SECONDS",
    "ConnectionCache",
    "quote_identifier",
    "require_database_name",
]
