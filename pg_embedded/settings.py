"""Instance settings, their fingerprint and TOML loading helpers."""

from __future__ import annotations

import hashlib
import json
import sys
from pathlib import Path
from typing import Any

import tomllib

import pydantic
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError

CONFIG_FILE = Path.home() / ".config" / "pg_embedded" / "config.toml"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
DEFAULT_USERNAME = "postgres"
DEFAULT_PASSWORD = "postgres"
DEFAULT_DATABASE = "postgres"
DEFAULT_TIMEOUT = 30.0
FINGERPRINT_LENGTH = 16


def _default_setup_timeout() -> float:
    # initdb is markedly slower on Windows.
    return 300.0 if sys.platform == "win32" else 30.0


class Settings(BaseModel):
    """Immutable configuration for one embedded PostgreSQL instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    database_name: str = DEFAULT_DATABASE
    data_dir: Path | None = None
    installation_dir: Path | None = None
    timeout: float = DEFAULT_TIMEOUT
    setup_timeout: float = Field(default_factory=_default_setup_timeout)
    persistent: bool = False

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except pydantic.ValidationError as exc:
            raise ConfigurationError(_describe_validation_error(exc)) from exc

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 <= value <= 65535:
            raise ValueError("Port must be between 0 and 65535")
        return value

    @field_validator("timeout", "setup_timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeout must be greater than 0")
        return value

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Username cannot be empty")
        return value

    @field_validator("database_name")
    @classmethod
    def _check_database_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Database name cannot be empty")
        return value

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Host cannot be empty")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str | None) -> str | None:
        if value is not None:
            parse_version_constraint(value)
        return value

    def version_specifier(self) -> SpecifierSet | None:
        """Return the parsed version constraint, if one is configured."""

        if self.version is None:
            return None
        return parse_version_constraint(self.version)

    def with_overrides(self, **updates: Any) -> Settings:
        """Return a validated copy with the given fields replaced."""

        data = self.model_dump()
        data.update(updates)
        return Settings(**data)


def parse_version_constraint(value: str) -> SpecifierSet:
    """Parse a version constraint; a bare version means "any patch of it"."""

    text = value.strip()
    if not text:
        raise ValueError("Version constraint cannot be empty")
    try:
        bare = Version(text)
    except InvalidVersion:
        bare = None
    if bare is not None:
        text = f"=={bare}.*"
    try:
        return SpecifierSet(text)
    except InvalidSpecifier as exc:
        raise ValueError(f"Invalid version constraint '{value}'") from exc


def config_fingerprint(settings: Settings) -> str:
    """Deterministic hash over every field of the settings."""

    payload = json.dumps(settings.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def load_settings(path: Path | None = None, **overrides: Any) -> Settings:
    """Load settings from the ``[postgres]`` table of a TOML file; fall back to defaults."""

    try:
        data = _read_settings_file(path or CONFIG_FILE)
    except FileNotFoundError:
        data = {}
    except (tomllib.TOMLDecodeError, OSError):
        data = {}
    data.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**data)


def _read_settings_file(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    section = raw.get("postgres")
    if not isinstance(section, dict):
        return {}
    known = Settings.model_fields.keys()
    return {key: value for key, value in section.items() if key in known}


def _describe_validation_error(exc: pydantic.ValidationError) -> str:
    messages: list[str] = []
    for error in exc.errors():
        message = str(error.get("msg", "invalid value"))
        # pydantic prefixes messages raised from validators.
        message = message.removeprefix("Value error, ")
        location = ".".join(str(part) for part in error.get("loc", ()))
        if error.get("type") == "value_error" or not location:
            messages.append(message)
        else:
            messages.append(f"{location}: {message}")
    return "; ".join(messages) or "Invalid settings"


__all__ = [
    "CONFIG_FILE",
    "Settings",
    "config_fingerprint",
    "load_settings",
    "parse_version_constraint",
]
