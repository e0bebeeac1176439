"""Unit tests for configuration module."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import tomli_w
from pydantic import ValidationError

from tasksync.config import (
    Settings,
    flatten_toml_config,
    get_config_path,
    get_settings,
    load_settings_with_toml,
    load_toml_config,
)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    with open(path, "wb") as f:
        tomli_w.dump(
            {
                "server": {"host": "0.0.0.0", "port": 8080},
                "storage": {"backend": "memory", "timeout_seconds": 2.5},
                "realtime": {"session_queue_size": 32},
                "logging": {"level": "WARNING", "format": "console"},
                "metrics": {"enabled": False},
            },
            f,
        )
    return path


class TestSettings:
    """Tests for Settings class."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

            assert settings.host == "127.0.0.1"
            assert settings.port == 5000
            assert settings.store_backend == "sqlite"
            assert settings.storage_timeout_seconds == 5.0
            assert settings.session_queue_size == 256
            assert settings.message_max_length == 4000
            assert settings.log_level == "INFO"
            assert settings.log_format == "json"
            assert settings.metrics_enabled is True

    def test_environment_override(self) -> None:
        """Test environment variable override."""
        with patch.dict(os.environ, {
            "TASKSYNC_PORT": "7000",
            "TASKSYNC_STORE_BACKEND": "memory",
            "TASKSYNC_LOG_LEVEL": "DEBUG",
            "TASKSYNC_CORS_ORIGINS": '["https://app.example.com"]',
        }, clear=True):
            settings = Settings()

            assert settings.port == 7000
            assert settings.store_backend == "memory"
            assert settings.log_level == "DEBUG"
            assert settings.cors_origins == ["https://app.example.com"]

    def test_invalid_store_backend(self) -> None:
        with patch.dict(os.environ, {"TASKSYNC_STORE_BACKEND": "mongo"}, clear=True):
            with pytest.raises(ValidationError):
                Settings()

    def test_invalid_port(self) -> None:
        with patch.dict(os.environ, {"TASKSYNC_PORT": "70000"}, clear=True):
            with pytest.raises(ValidationError):
                Settings()

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(storage_timeout_seconds=0)


class TestGetSettings:
    def test_caches_settings(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestConfigPath:
    def test_respects_xdg_config_home(self, tmp_path: Path) -> None:
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}):
            if os.name != "nt":
                assert get_config_path() == tmp_path / "tasksync" / "config.toml"


class TestTomlConfig:
    """Tests for TOML loading and precedence."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert load_toml_config(tmp_path / "absent.toml") == {}

    def test_flatten_maps_tables_to_fields(self, config_file: Path) -> None:
        flat = flatten_toml_config(load_toml_config(config_file))

        assert flat == {
            "host": "0.0.0.0",
            "port": 8080,
            "store_backend": "memory",
            "storage_timeout_seconds": 2.5,
            "session_queue_size": 32,
            "log_level": "WARNING",
            "log_format": "console",
            "metrics_enabled": False,
        }

    def test_unknown_keys_are_ignored(self) -> None:
        assert flatten_toml_config({"server": {"workers": 4}, "other": {"x": 1}}) == {}

    def test_toml_values_apply(self, config_file: Path) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings_with_toml(config_file)

        assert settings.port == 8080
        assert settings.store_backend == "memory"
        assert settings.metrics_enabled is False

    def test_environment_beats_toml(self, config_file: Path) -> None:
        with patch.dict(os.environ, {"TASKSYNC_PORT": "9000"}, clear=True):
            settings = load_settings_with_toml(config_file)

        assert settings.port == 9000
        assert settings.host == "0.0.0.0"

    def test_cli_beats_environment(self, config_file: Path) -> None:
        with patch.dict(os.environ, {"TASKSYNC_PORT": "9000"}, clear=True):
            settings = load_settings_with_toml(config_file, port=9100, host=None)

        assert settings.port == 9100
        assert settings.host == "0.0.0.0"
