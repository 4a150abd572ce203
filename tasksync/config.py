"""Configuration loading for tasksync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


@dataclass
class StoreConfig:
    """Configuration for the local record store."""

    db_path: str = "~/.tasksync/tasks.db"


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    api_base_url: str = "http://localhost:3000/api"
    batch_size: int = 50
    retry_ceiling: int = 3
    connectivity_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 30.0
    sync_interval_seconds: int = 0  # 0 disables the background loop


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def validate(self) -> "Config":
        """Check value ranges.

        Returns:
            self, for chaining.

        Raises:
            ConfigError: If a value is out of range.
        """
        _require_positive_int("sync.batch_size", self.sync.batch_size)
        _require_positive_int("sync.retry_ceiling", self.sync.retry_ceiling)
        if self.sync.connectivity_timeout_seconds <= 0:
            raise ConfigError("sync.connectivity_timeout_seconds must be positive")
        if self.sync.request_timeout_seconds <= 0:
            raise ConfigError("sync.request_timeout_seconds must be positive")
        if self.sync.sync_interval_seconds < 0:
            raise ConfigError("sync.sync_interval_seconds must not be negative")
        return self


def _require_positive_int(name: str, value: Any) -> None:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TASKSYNC_ prefix."""
    return os.environ.get(f"TASKSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    try:
        if base_url := _get_env("API_BASE_URL"):
            config.sync.api_base_url = base_url
        if batch_size := _get_env("SYNC_BATCH_SIZE"):
            config.sync.batch_size = int(batch_size)
        if retry_ceiling := _get_env("SYNC_RETRY_CEILING"):
            config.sync.retry_ceiling = int(retry_ceiling)
        if conn_timeout := _get_env("SYNC_CONNECTIVITY_TIMEOUT"):
            config.sync.connectivity_timeout_seconds = float(conn_timeout)
        if req_timeout := _get_env("SYNC_REQUEST_TIMEOUT"):
            config.sync.request_timeout_seconds = float(req_timeout)
        if interval := _get_env("SYNC_INTERVAL"):
            config.sync.sync_interval_seconds = int(interval)

        if host := _get_env("SERVER_HOST"):
            config.server.host = host
        if port := _get_env("SERVER_PORT"):
            config.server.port = int(port)
    except ValueError as e:
        raise ConfigError(f"Invalid TASKSYNC_* environment value: {e}") from e

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigError: If the resulting configuration is invalid.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    api_base_url=sync_data.get(
                        "api_base_url", config.sync.api_base_url
                    ),
                    batch_size=sync_data.get("batch_size", config.sync.batch_size),
                    retry_ceiling=sync_data.get(
                        "retry_ceiling", config.sync.retry_ceiling
                    ),
                    connectivity_timeout_seconds=sync_data.get(
                        "connectivity_timeout_seconds",
                        config.sync.connectivity_timeout_seconds,
                    ),
                    request_timeout_seconds=sync_data.get(
                        "request_timeout_seconds",
                        config.sync.request_timeout_seconds,
                    ),
                    sync_interval_seconds=sync_data.get(
                        "sync_interval_seconds", config.sync.sync_interval_seconds
                    ),
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                )

    config = _apply_env_overrides(config)

    return config.validate()
