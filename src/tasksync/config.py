"""Configuration management using pydantic-settings.

Configuration is loaded with the following precedence:
1. CLI arguments (highest priority)
2. Environment variables (TASKSYNC_* prefix)
3. Global config file (~/.config/tasksync/config.toml)
4. Built-in defaults (lowest priority)
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_path() -> Path:
    """Location of the per-user config file.

    $XDG_CONFIG_HOME/tasksync/config.toml, or %APPDATA% on Windows.
    """
    env_var, fallback = ("APPDATA", Path.home()) if os.name == "nt" else ("XDG_CONFIG_HOME", Path.home() / ".config")
    return Path(os.environ.get(env_var) or fallback) / "tasksync" / "config.toml"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment variables use the TASKSYNC_ prefix:
    - TASKSYNC_PORT
    - TASKSYNC_STORE_BACKEND
    - TASKSYNC_LOG_LEVEL
    etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server Configuration
    host: str = Field(default="127.0.0.1", description="HTTP/WebSocket bind address")
    port: int = Field(default=5000, ge=1, le=65535, description="HTTP/WebSocket port")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    # Storage Configuration
    store_backend: Literal["memory", "sqlite"] = Field(
        default="sqlite",
        description="Document store implementation",
    )
    sqlite_path: str = Field(default="~/.local/share/tasksync/tasksync.db", description="SQLite database file")
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on a single storage call before it is reported unavailable",
    )

    # Realtime Configuration
    session_queue_size: int = Field(
        default=256,
        ge=1,
        description="Outbound events buffered per session before the session is dropped",
    )
    message_max_length: int = Field(default=4000, ge=1, description="Maximum chat message length")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format",
    )
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    # Metrics Configuration
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics on /metrics")


def load_toml_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file.

    Args:
        path: Path to config file (uses default if None)

    Returns:
        Configuration dictionary (empty if file doesn't exist)
    """
    config_path = path or get_config_path()
    if config_path.exists():
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    return {}


# (toml table, toml key) -> Settings field
TOML_FIELD_MAP: dict[tuple[str, str], str] = {
    ("server", "host"): "host",
    ("server", "port"): "port",
    ("server", "cors_origins"): "cors_origins",
    ("storage", "backend"): "store_backend",
    ("storage", "sqlite_path"): "sqlite_path",
    ("storage", "timeout_seconds"): "storage_timeout_seconds",
    ("realtime", "session_queue_size"): "session_queue_size",
    ("realtime", "message_max_length"): "message_max_length",
    ("logging", "level"): "log_level",
    ("logging", "format"): "log_format",
    ("logging", "file"): "log_file",
    ("metrics", "enabled"): "metrics_enabled",
}


def flatten_toml_config(toml_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested TOML config to flat dictionary for Settings.

    Args:
        toml_config: Nested TOML configuration

    Returns:
        Flattened configuration dictionary
    """
    overrides: dict[str, Any] = {}

    for (table, key), field in TOML_FIELD_MAP.items():
        section = toml_config.get(table)
        if isinstance(section, dict) and key in section:
            overrides[field] = section[key]

    return overrides


def load_settings_with_toml(config_path: Path | None = None, **cli_overrides: Any) -> Settings:
    """Load settings with TOML config as base, env vars and CLI as overrides.

    Values from the TOML file are only used for fields that are not set in
    the environment, so TASKSYNC_* variables keep precedence over the file.

    Args:
        config_path: Optional path to TOML config file
        **cli_overrides: Values given on the command line (None is ignored)

    Returns:
        Settings instance with merged configuration
    """
    toml_overrides = flatten_toml_config(load_toml_config(config_path))
    env_settings = Settings()

    merged: dict[str, Any] = {}
    for field, value in toml_overrides.items():
        if field not in env_settings.model_fields_set:
            merged[field] = value
    merged.update({k: v for k, v in cli_overrides.items() if v is not None})

    return Settings(**merged) if merged else env_settings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance (cached)
    """
    return Settings()
