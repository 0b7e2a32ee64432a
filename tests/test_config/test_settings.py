"""Tests for the configuration system."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

from marketplace_coord.config.settings import (
    AppConfig,
    CacheConfig,
    MetricsConfig,
    QueueConfig,
    SessionConfig,
    StoreConfig,
    StoreEngine,
    _load_yaml,
)

if TYPE_CHECKING:
    from pathlib import Path

    import pytest

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    """Verify all default values are correct."""

    def test_store_defaults(self) -> None:
        cfg = StoreConfig()
        assert cfg.engine == StoreEngine.MEMORY
        assert cfg.url == "redis://localhost:6379/0"
        assert cfg.password == ""
        assert cfg.max_connections == 10

    def test_cache_defaults(self) -> None:
        cfg = CacheConfig()
        assert cfg.default_ttl == 3600
        assert cfg.prefix == "cache:"

    def test_session_defaults(self) -> None:
        cfg = SessionConfig()
        assert cfg.default_ttl == 86400
        assert cfg.active_window_seconds == 900

    def test_queue_defaults(self) -> None:
        cfg = QueueConfig()
        assert cfg.job_ttl == 86400
        assert cfg.default_max_attempts == 3
        assert cfg.backoff_base_ms == 1000
        assert cfg.default_interval_ms == 1000
        assert cfg.notifications_interval_ms == 500
        assert cfg.reminders_interval_ms == 5000
        assert cfg.completed_retention_ms == 24 * 60 * 60 * 1000

    def test_metrics_defaults(self) -> None:
        assert MetricsConfig().enabled is True

    def test_app_defaults(self) -> None:
        cfg = AppConfig()
        assert cfg.debug is False
        assert isinstance(cfg.store, StoreConfig)
        assert isinstance(cfg.queue, QueueConfig)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    def test_nested_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MPCOORD_STORE__ENGINE", "redis")
        monkeypatch.setenv("MPCOORD_STORE__URL", "redis://cache.internal:6380/2")
        cfg = AppConfig()
        assert cfg.store.engine == StoreEngine.REDIS
        assert cfg.store.url == "redis://cache.internal:6380/2"

    def test_queue_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MPCOORD_QUEUE__BACKOFF_BASE_MS", "250")
        assert QueueConfig().backoff_base_ms == 250


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------


class TestYaml:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "nope.yaml") == {}

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        assert _load_yaml(path) == {}

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            textwrap.dedent(
                """\
                debug: true
                cache:
                  default_ttl: 120
                session:
                  default_ttl: 600
                """
            ),
            encoding="utf-8",
        )
        cfg = AppConfig.from_yaml(path)
        assert cfg.debug is True
        assert cfg.cache.default_ttl == 120
        assert cfg.session.default_ttl == 600
        # untouched sections keep defaults
        assert cfg.queue.default_max_attempts == 3
