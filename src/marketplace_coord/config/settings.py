"""Coordination-layer settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``MPCOORD_``, nested via ``__``)
2. YAML config file (``config_path`` field or ``MPCOORD_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class StoreEngine(enum.StrEnum):
    """Supported key/value store backends."""

    MEMORY = "memory"
    REDIS = "redis"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class StoreConfig(BaseSettings):
    """Shared key/value store connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_STORE__",
        case_sensitive=False,
    )

    engine: StoreEngine = Field(
        default=StoreEngine.MEMORY,
        description="Store backend: memory or redis",
    )
    url: str = "redis://localhost:6379/0"
    password: str = ""
    max_connections: int = 10


class CacheConfig(BaseSettings):
    """Cache store settings."""

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_CACHE__",
        case_sensitive=False,
    )

    default_ttl: int = 3600
    prefix: str = "cache:"


class SessionConfig(BaseSettings):
    """Session store settings."""

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_SESSION__",
        case_sensitive=False,
    )

    default_ttl: int = 24 * 60 * 60
    active_window_seconds: int = 15 * 60


class QueueConfig(BaseSettings):
    """Job queue settings shared by every named queue."""

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_QUEUE__",
        case_sensitive=False,
    )

    job_ttl: int = 24 * 60 * 60
    default_max_attempts: int = 3
    backoff_base_ms: int = 1000
    active_lease_ms: int = 5 * 60 * 1000
    completed_retention_ms: int = 24 * 60 * 60 * 1000
    cleanup_period: float = 60 * 60
    stop_timeout_ms: int = 30_000
    default_interval_ms: int = 1000
    notifications_interval_ms: int = 500
    reminders_interval_ms: int = 5000


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level coordination-layer configuration.

    Loads settings from environment variables (``MPCOORD_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="MPCOORD_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    config_path: str = ""

    store: StoreConfig = Field(default_factory=StoreConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
