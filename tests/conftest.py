"""Shared test fixtures for the marketplace-coord test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from marketplace_coord.config.settings import StoreConfig, StoreEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from marketplace_coord.store.client import StoreClient


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config():
    """Provide a test AppConfig that keeps background loops quiet."""
    from marketplace_coord.config.settings import AppConfig, QueueConfig

    return AppConfig(
        debug=True,
        store=StoreConfig(engine=StoreEngine.MEMORY),
        queue=QueueConfig(
            default_interval_ms=60_000,
            notifications_interval_ms=60_000,
            reminders_interval_ms=60_000,
            cleanup_period=3600,
        ),
    )


@pytest.fixture
async def store() -> AsyncIterator[StoreClient]:
    """A connected store client on the in-memory backend."""
    from marketplace_coord.store.client import StoreClient

    client = StoreClient(StoreConfig(engine=StoreEngine.MEMORY))
    await client.connect()
    yield client
    await client.close()
