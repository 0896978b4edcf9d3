"""Tests for Settings validation, fingerprinting and TOML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from pg_embedded import settings as settings_module
from pg_embedded.errors import ConfigurationError
from pg_embedded.settings import Settings, config_fingerprint, load_settings, parse_version_constraint


def test_defaults_match_a_stock_server() -> None:
    settings = Settings()

    assert settings.host == "localhost"
    assert settings.port == 5432
    assert settings.username == "postgres"
    assert settings.password == "postgres"
    assert settings.database_name == "postgres"
    assert settings.timeout == 30
    assert settings.persistent is False
    assert settings.data_dir is None


@pytest.mark.parametrize("port", [0, 1, 5432, 65535])
def test_accepts_ports_in_range(port: int) -> None:
    assert Settings(port=port).port == port


@pytest.mark.parametrize("port", [-1, 65536, 100000])
def test_rejects_ports_out_of_range(port: int) -> None:
    with pytest.raises(ConfigurationError, match="Port must be between 0 and 65535"):
        Settings(port=port)


def test_rejects_empty_username() -> None:
    with pytest.raises(ConfigurationError, match="Username cannot be empty"):
        Settings(username="")


def test_rejects_blank_database_name() -> None:
    with pytest.raises(ConfigurationError, match="Database name cannot be empty"):
        Settings(database_name="  ")


@pytest.mark.parametrize("field", ["timeout", "setup_timeout"])
def test_rejects_non_positive_timeouts(field: str) -> None:
    with pytest.raises(ConfigurationError, match="Timeout must be greater than 0"):
        Settings(**{field: 0})


def test_rejects_unknown_fields() -> None:
    with pytest.raises(ConfigurationError):
        Settings(colour="blue")


def test_configuration_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        Settings(port=70000)


def test_settings_are_immutable() -> None:
    settings = Settings()

    with pytest.raises(Exception):
        settings.port = 1  # type: ignore[misc]


def test_with_overrides_validates_the_copy() -> None:
    settings = Settings(port=6000)

    updated = settings.with_overrides(username="app")

    assert updated.username == "app"
    assert updated.port == 6000
    with pytest.raises(ConfigurationError):
        settings.with_overrides(port=-5)


def test_bare_version_means_any_patch_release() -> None:
    specifier = parse_version_constraint("16")

    assert specifier.contains("16.4")
    assert not specifier.contains("15.7")


def test_version_specifier_ranges_are_supported() -> None:
    specifier = Settings(version=">=14,<17").version_specifier()

    assert specifier is not None
    assert specifier.contains("15.2")
    assert not specifier.contains("17.0")


def test_invalid_version_constraint_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        Settings(version="not a version")


def test_fingerprint_is_stable_and_short() -> None:
    first = config_fingerprint(Settings(port=5433))
    second = config_fingerprint(Settings(port=5433))

    assert first == second
    assert len(first) == 16
    int(first, 16)


def test_fingerprint_differs_by_port() -> None:
    assert config_fingerprint(Settings(port=5433)) != config_fingerprint(Settings(port=5434))


def test_load_settings_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_settings()

    assert result == Settings()


def test_load_settings_reads_postgres_table(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
[postgres]
port = 0
username = "app"
database_name = "appdb"
persistent = true
unknown_key = "ignored"

[other]
port = 1
"""
    )

    result = load_settings(config_path)

    assert result.port == 0
    assert result.username == "app"
    assert result.database_name == "appdb"
    assert result.persistent is True


def test_load_settings_applies_overrides_last(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('[postgres]\nport = 6543\nusername = "app"\n')

    result = load_settings(config_path, port=7000, username=None)

    assert result.port == 7000
    assert result.username == "app"


def test_load_settings_handles_toml_errors(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("port = [unterminated")

    result = load_settings(config_path)

    assert result == Settings()


def test_load_settings_surfaces_invalid_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[postgres]\nport = 99999\n")

    with pytest.raises(ConfigurationError):
        load_settings(config_path)
