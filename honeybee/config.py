"""Configuration loading for Honeybee."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


@dataclass
class SessionConfig:
    """Signed-in user as handed over by the authentication service."""

    user_id: int | None = None
    partner_id: int | None = None
    token: str | None = None


@dataclass
class ServerConfig:
    api_url: str = "http://localhost:3001/api"
    timeout_seconds: float = 5.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5


@dataclass
class RealtimeConfig:
    """Configuration for the partner notification channel."""

    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "honeybee"
    keepalive: int = 60
    connect_attempts: int = 3
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 60


@dataclass
class StoreConfig:
    db_path: str = "~/.honeybee/events.db"


@dataclass
class SyncConfig:
    """Configuration for periodic reconciliation."""

    enabled: bool = True
    interval_seconds: int = 300
    max_backoff_seconds: int = 3600


@dataclass
class Config:
    session: SessionConfig = field(default_factory=SessionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with HONEYBEE_ prefix."""
    return os.environ.get(f"HONEYBEE_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Session overrides
    if user_id := _get_env("USER_ID"):
        config.session.user_id = _as_int(user_id, "HONEYBEE_USER_ID")
    if partner_id := _get_env("PARTNER_ID"):
        config.session.partner_id = _as_int(partner_id, "HONEYBEE_PARTNER_ID")
    if token := _get_env("TOKEN"):
        config.session.token = token

    # Server overrides
    if api_url := _get_env("API_URL"):
        config.server.api_url = api_url
    if timeout := _get_env("API_TIMEOUT"):
        config.server.timeout_seconds = _as_float(timeout, "HONEYBEE_API_TIMEOUT")

    # Realtime overrides
    if enabled := _get_env("REALTIME_ENABLED"):
        config.realtime.enabled = _as_bool(enabled)
    if broker := _get_env("REALTIME_BROKER"):
        config.realtime.broker = broker
    if port := _get_env("REALTIME_PORT"):
        config.realtime.port = _as_int(port, "HONEYBEE_REALTIME_PORT")

    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = _as_int(sync_interval, "HONEYBEE_SYNC_INTERVAL")

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigurationError: If the file is not valid YAML or values are invalid.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid config file {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {path} must contain a mapping")

            # Parse session config
            if "session" in data:
                session_data = data["session"] or {}
                config.session = SessionConfig(
                    user_id=session_data.get("user_id"),
                    partner_id=session_data.get("partner_id"),
                    token=session_data.get("token"),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"] or {}
                config.server = ServerConfig(
                    api_url=server_data.get("api_url", config.server.api_url),
                    timeout_seconds=server_data.get(
                        "timeout_seconds", config.server.timeout_seconds
                    ),
                    max_retries=server_data.get("max_retries", config.server.max_retries),
                    retry_backoff_seconds=server_data.get(
                        "retry_backoff_seconds", config.server.retry_backoff_seconds
                    ),
                )

            # Parse realtime config
            if "realtime" in data:
                rt_data = data["realtime"] or {}
                config.realtime = RealtimeConfig(
                    enabled=rt_data.get("enabled", config.realtime.enabled),
                    broker=rt_data.get("broker", config.realtime.broker),
                    port=rt_data.get("port", config.realtime.port),
                    topic_prefix=rt_data.get("topic_prefix", config.realtime.topic_prefix),
                    keepalive=rt_data.get("keepalive", config.realtime.keepalive),
                    connect_attempts=rt_data.get(
                        "connect_attempts", config.realtime.connect_attempts
                    ),
                    reconnect_min_delay=rt_data.get(
                        "reconnect_min_delay", config.realtime.reconnect_min_delay
                    ),
                    reconnect_max_delay=rt_data.get(
                        "reconnect_max_delay", config.realtime.reconnect_max_delay
                    ),
                )

            # Parse store config
            if "store" in data:
                config.store = StoreConfig(
                    db_path=(data["store"] or {}).get("db_path", config.store.db_path)
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"] or {}
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    max_backoff_seconds=sync_data.get(
                        "max_backoff_seconds", config.sync.max_backoff_seconds
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    if config.realtime.reconnect_min_delay > config.realtime.reconnect_max_delay:
        raise ConfigurationError(
            "realtime.reconnect_min_delay must not exceed reconnect_max_delay"
        )
    if config.sync.interval_seconds <= 0:
        raise ConfigurationError("sync.interval_seconds must be positive")

    return config
