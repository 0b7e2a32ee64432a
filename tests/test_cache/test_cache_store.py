"""Tests for the TTL cache store."""

from __future__ import annotations

import asyncio

import pytest

from marketplace_coord.cache.service import STATS_KEY, CacheStats, CacheStore
from marketplace_coord.config.settings import CacheConfig
from marketplace_coord.metrics.collector import CoordinationMetrics
from marketplace_coord.store.client import StoreClient


@pytest.fixture
def cache(store: StoreClient) -> CacheStore:
    return CacheStore(store, CacheConfig())


class TestSingleKey:
    """set/get/delete/exists."""

    async def test_set_get_json(self, cache: CacheStore) -> None:
        """Values round-trip through JSON."""
        value = {"vendor": "v1", "services": [1, 2], "active": True}
        await cache.set("profile", value)
        assert await cache.get("profile") == value

    async def test_default_prefix_and_ttl(self, cache: CacheStore, store: StoreClient) -> None:
        """Entries land under ``cache:`` with the default one hour TTL."""
        await cache.set("k", 1)
        assert await store.get("cache:k") == "1"
        assert 3599 <= await store.ttl("cache:k") <= 3600

    async def test_custom_ttl_and_prefix(self, cache: CacheStore, store: StoreClient) -> None:
        await cache.set("k", "v", ttl=30, prefix="vendor:")
        assert await store.ttl("vendor:k") == 30
        assert await cache.get("k", prefix="vendor:") == "v"
        assert await cache.get("k") is None

    async def test_expiry(self, cache: CacheStore) -> None:
        """An entry is gone once its TTL elapses."""
        await cache.set("k", "v", ttl=1)
        await asyncio.sleep(1.1)
        assert await cache.get("k") is None

    async def test_delete_and_exists(self, cache: CacheStore) -> None:
        await cache.set("k", "v")
        assert await cache.exists("k")
        assert await cache.delete("k")
        assert not await cache.exists("k")
        assert not await cache.delete("k")

    async def test_corrupt_value_is_a_miss(self, cache: CacheStore, store: StoreClient) -> None:
        """Undecodable JSON is logged and treated as a miss."""
        await store.set("cache:bad", "{not json")
        assert await cache.get("bad") is None
        assert (await cache.stats()).misses == 1


class TestGetOrSet:
    async def test_computes_once(self, cache: CacheStore) -> None:
        """The compute function only runs on a miss."""
        calls = 0

        async def compute() -> dict[str, int]:
            nonlocal calls
            calls += 1
            return {"n": 42}

        assert await cache.get_or_set("k", compute) == {"n": 42}
        assert await cache.get_or_set("k", compute) == {"n": 42}
        assert calls == 1

    async def test_compute_error_propagates(self, cache: CacheStore) -> None:
        async def compute() -> None:
            msg = "backend down"
            raise RuntimeError(msg)

        with pytest.raises(RuntimeError, match="backend down"):
            await cache.get_or_set("k", compute)
        assert not await cache.exists("k")


class TestBatch:
    async def test_set_and_get_multiple(self, cache: CacheStore, store: StoreClient) -> None:
        """Per-entry TTL wins over the batch TTL."""
        await cache.set_multiple([("a", 1), ("b", [2], 10)], ttl=100)
        assert await store.ttl("cache:a") == 100
        assert await store.ttl("cache:b") == 10
        assert await cache.get_multiple(["a", "b", "c"]) == {"a": 1, "b": [2], "c": None}

    async def test_get_multiple_counts(self, cache: CacheStore) -> None:
        await cache.set("a", 1)
        await cache.get_multiple(["a", "missing"])
        stats = await cache.stats()
        assert (stats.hits, stats.misses) == (1, 1)

    async def test_set_multiple_empty(self, cache: CacheStore) -> None:
        await cache.set_multiple([])
        assert (await cache.stats()).keys == 0


class TestTags:
    async def test_invalidate_removes_tagged_entries(self, cache: CacheStore) -> None:
        """Only entries indexed under the given tags are removed."""
        await cache.set_with_tags("a", 1, ["vendor:1"])
        await cache.set_with_tags("b", 2, ["vendor:1", "city:paris"])
        await cache.set_with_tags("c", 3, ["city:paris"])
        await cache.set("d", 4)

        assert await cache.invalidate_by_tags(["vendor:1"]) == 2
        assert await cache.get("a") is None
        assert await cache.get("b") is None
        assert await cache.get("c") == 3
        assert await cache.get("d") == 4

    async def test_tag_index_removed(self, cache: CacheStore, store: StoreClient) -> None:
        await cache.set_with_tags("a", 1, ["t"])
        assert await store.smembers("cache:tag:t") == {"cache:a"}
        await cache.invalidate_by_tags(["t"])
        assert not await store.exists("cache:tag:t")

    async def test_tag_ttl_never_shortened(self, cache: CacheStore, store: StoreClient) -> None:
        """A tag lives at least as long as its longest-lived entry."""
        await cache.set_with_tags("long", 1, ["t"], ttl=500)
        await cache.set_with_tags("short", 2, ["t"], ttl=10)
        assert await store.ttl("cache:tag:t") == 500

    async def test_unknown_tag(self, cache: CacheStore) -> None:
        assert await cache.invalidate_by_tags(["nope"]) == 0


class TestClearPrefix:
    async def test_clear_default_prefix(self, cache: CacheStore, store: StoreClient) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        await store.set("session:x", "keep")
        assert await cache.clear_prefix() == 2
        assert await store.get("session:x") == "keep"

    async def test_clear_custom_prefix(self, cache: CacheStore) -> None:
        await cache.set("a", 1, prefix="vendor:")
        await cache.set("b", 2)
        assert await cache.clear_prefix("vendor:") == 1
        assert await cache.get("b") == 2

    async def test_clear_nothing(self, cache: CacheStore) -> None:
        assert await cache.clear_prefix() == 0


class TestStats:
    async def test_counts(self, cache: CacheStore) -> None:
        """Hits, misses and live keys; tag indices are not counted as keys."""
        await cache.set_with_tags("a", 1, ["t"])
        await cache.get("a")
        await cache.get("a")
        await cache.get("missing")
        stats = await cache.stats()
        assert stats == CacheStats(hits=2, misses=1, keys=1)
        assert stats.to_dict() == {"hits": 2, "misses": 1, "keys": 1}

    async def test_reset(self, cache: CacheStore, store: StoreClient) -> None:
        await cache.get("missing")
        await cache.reset_stats()
        assert not await store.exists(STATS_KEY)
        assert (await cache.stats()).misses == 0

    async def test_metrics(self, store: StoreClient) -> None:
        """Lookups are also counted in Prometheus when metrics are attached."""
        metrics = CoordinationMetrics()
        cache = CacheStore(store, CacheConfig(), metrics=metrics)
        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("b")
        registry = metrics.registry
        assert registry.get_sample_value("mpcoord_cache_lookups_total", {"result": "hit"}) == 1
        assert registry.get_sample_value("mpcoord_cache_lookups_total", {"result": "miss"}) == 1


class TestRateLimit:
    async def test_allows_up_to_max(self, cache: CacheStore) -> None:
        results = [
            await cache.check_rate_limit("client-1", "message", max_requests=3, window_ms=3_600_000)
            for _ in range(5)
        ]
        assert results == [True, True, True, False, False]

    async def test_subjects_are_independent(self, cache: CacheStore) -> None:
        assert await cache.check_rate_limit("a", "login", max_requests=1, window_ms=3_600_000)
        assert not await cache.check_rate_limit("a", "login", max_requests=1, window_ms=3_600_000)
        assert await cache.check_rate_limit("b", "login", max_requests=1, window_ms=3_600_000)

    async def test_window_key_expires(self, cache: CacheStore, store: StoreClient) -> None:
        await cache.check_rate_limit("a", "login", window_ms=60_000)
        (key,) = await store.keys("rate_limit:a:login:*")
        assert 0 < await store.ttl(key) <= 60
