"""Configuration loading for clinisync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .store.schema import Destination


@dataclass
class DeviceConfig:
    name: str = "clinisync-device"


@dataclass
class StoreConfig:
    db_path: str = "~/.clinisync/records.db"


@dataclass
class DestinationConfig:
    """Connection and schedule for one remote destination."""

    enabled: bool = True
    url: str = ""
    interval_seconds: float = 300
    max_retries: int = 3
    timeout_seconds: float = 30.0
    token: str | None = None


@dataclass
class SyncConfig:
    """Configuration for the per-destination sync workers."""

    enabled: bool = True
    batch_size: int = 100
    push_timeout_seconds: float = 60.0
    max_backoff_seconds: float = 3600
    debug: DestinationConfig = field(default_factory=DestinationConfig)
    insight: DestinationConfig = field(default_factory=DestinationConfig)

    def destination(self, destination: Destination) -> DestinationConfig:
        return getattr(self, destination.value)


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CLINISYNC_ prefix."""
    return os.environ.get(f"CLINISYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("DEVICE_NAME"):
        config.device.name = name

    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if batch_size := _get_env("BATCH_SIZE"):
        config.sync.batch_size = int(batch_size)

    for destination in Destination:
        prefix = destination.name
        settings = config.sync.destination(destination)
        if url := _get_env(f"{prefix}_URL"):
            settings.url = url
        if token := _get_env(f"{prefix}_TOKEN"):
            settings.token = token
        if enabled := _get_env(f"{prefix}_ENABLED"):
            settings.enabled = _is_true(enabled)
        if interval := _get_env(f"{prefix}_INTERVAL"):
            settings.interval_seconds = float(interval)

    return config


def _parse_destination(data: dict, defaults: DestinationConfig) -> DestinationConfig:
    """Parse one destination block."""
    return DestinationConfig(
        enabled=data.get("enabled", defaults.enabled),
        url=data.get("url", defaults.url),
        interval_seconds=data.get("interval_seconds", defaults.interval_seconds),
        max_retries=data.get("max_retries", defaults.max_retries),
        timeout_seconds=data.get("timeout_seconds", defaults.timeout_seconds),
        token=data.get("token", defaults.token),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "device" in data:
                config.device = DeviceConfig(
                    name=data["device"].get("name", config.device.name)
                )

            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            if "sync" in data:
                sync_data = data["sync"]
                destinations = sync_data.get("destinations", {})
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    batch_size=sync_data.get("batch_size", config.sync.batch_size),
                    push_timeout_seconds=sync_data.get(
                        "push_timeout_seconds", config.sync.push_timeout_seconds
                    ),
                    max_backoff_seconds=sync_data.get(
                        "max_backoff_seconds", config.sync.max_backoff_seconds
                    ),
                    debug=_parse_destination(
                        destinations.get("debug", {}), config.sync.debug
                    ),
                    insight=_parse_destination(
                        destinations.get("insight", {}), config.sync.insight
                    ),
                )

    return _apply_env_overrides(config)
