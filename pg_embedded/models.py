"""Shared value types: lifecycle state, connection descriptors and tool results."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote, urlencode


class InstanceState(str, Enum):
    """Lifecycle state of an embedded server."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    """Resolved connection descriptor for a running instance."""

    host: str
    port: int
    username: str
    password: str
    database_name: str
    created_at: float = field(default_factory=time.monotonic, compare=False)

    @property
    def connection_string(self) -> str:
        return self._url(self.password)

    @property
    def safe_connection_string(self) -> str:
        """Connection URL with the password masked, suitable for logs."""

        return self._url("***", encode_password=False)

    @property
    def jdbc_url(self) -> str:
        return self._jdbc({"user": self.username, "password": self.password})

    @property
    def safe_jdbc_url(self) -> str:
        """JDBC URL without the password, for display."""

        return self._jdbc({"user": self.username})

    def to_config_object(self) -> dict[str, object]:
        """Plain mapping usable as keyword arguments for most client libraries."""

        return {
            "host": self.host,
            "port": self.port,
            "user": self.username,
            "password": self.password,
            "database": self.database_name,
        }

    def for_database(self, database_name: str) -> ConnectionInfo:
        return ConnectionInfo(
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            database_name=database_name,
            created_at=self.created_at,
        )

    def _url(self, password: str, *, encode_password: bool = True) -> str:
        user = quote(self.username, safe="")
        secret = quote(password, safe="") if encode_password else password
        database = quote(self.database_name, safe="")
        return f"postgresql://{user}:{secret}@{self.host}:{self.port}/{database}"

    def _jdbc(self, params: dict[str, str]) -> str:
        database = quote(self.database_name, safe="")
        return f"jdbc:postgresql://{self.host}:{self.port}/{database}?{urlencode(params)}"


_CONNINFO_SAFE = re.compile(r"^[^\s'\\]+$")


def _conninfo_value(value: object) -> str:
    text = str(value)
    if text and _CONNINFO_SAFE.match(text):
        return text
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Connection parameters handed to a utility invocation."""

    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    database: str | None = None

    @classmethod
    def from_info(cls, info: ConnectionInfo, database: str | None = None) -> ConnectionConfig:
        return cls(
            host=info.host,
            port=info.port,
            username=info.username,
            password=info.password,
            database=database or info.database_name,
        )

    def to_conninfo(self) -> str:
        """Render a libpq keyword/value connection string."""

        pairs = (
            ("host", self.host),
            ("port", self.port),
            ("user", self.username),
            ("password", self.password),
            ("dbname", self.database),
        )
        return " ".join(f"{key}={_conninfo_value(value)}" for key, value in pairs if value is not None)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Captured outcome of a utility invocation."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class StructuredResult:
    """Query output converted to a JSON array with a row count."""

    data: str | None
    stdout: str
    stderr: str
    success: bool
    row_count: int | None = None


__all__ = [
    "ConnectionConfig",
    "ConnectionInfo",
    "InstanceState",
    "StructuredResult",
    "ToolResult",
]
