"""Tests for the in-memory store backend."""

from __future__ import annotations

import asyncio

import pytest

from marketplace_coord.config.settings import StoreConfig, StoreEngine
from marketplace_coord.store.memory import MemoryStore


@pytest.fixture
async def mem() -> MemoryStore:
    store = MemoryStore(StoreConfig(engine=StoreEngine.MEMORY))
    await store.connect()
    return store


class TestStrings:
    """String keys with expiry."""

    async def test_set_get(self, mem: MemoryStore) -> None:
        assert await mem.set("k", "v")
        assert await mem.get("k") == "v"
        assert await mem.get("missing") is None

    async def test_set_nx(self, mem: MemoryStore) -> None:
        assert await mem.set("k", "first", nx=True)
        assert not await mem.set("k", "second", nx=True)
        assert await mem.get("k") == "first"

    async def test_ttl_expiry(self, mem: MemoryStore) -> None:
        await mem.set("k", "v", ttl=1)
        assert await mem.get("k") == "v"
        await asyncio.sleep(1.1)
        assert await mem.get("k") is None
        assert not await mem.exists("k")

    async def test_ttl_values(self, mem: MemoryStore) -> None:
        await mem.set("forever", "v")
        await mem.set("short", "v", ttl=100)
        assert await mem.ttl("forever") == -1
        assert 99 <= await mem.ttl("short") <= 100
        assert await mem.ttl("missing") == -2

    async def test_set_clears_previous_expiry(self, mem: MemoryStore) -> None:
        await mem.set("k", "v", ttl=100)
        await mem.set("k", "v2")
        assert await mem.ttl("k") == -1

    async def test_expire(self, mem: MemoryStore) -> None:
        await mem.set("k", "v")
        assert await mem.expire("k", 50)
        assert await mem.ttl("k") == 50
        assert not await mem.expire("missing", 50)

    async def test_expire_non_positive_deletes(self, mem: MemoryStore) -> None:
        await mem.set("k", "v")
        await mem.expire("k", 0)
        assert not await mem.exists("k")

    async def test_delete_counts_existing(self, mem: MemoryStore) -> None:
        await mem.set("a", "1")
        await mem.set("b", "2")
        assert await mem.delete("a", "b", "c") == 2

    async def test_mget(self, mem: MemoryStore) -> None:
        await mem.set("a", "1")
        assert await mem.mget(["a", "b"]) == ["1", None]

    async def test_set_many(self, mem: MemoryStore) -> None:
        await mem.set_many([("a", "1", None), ("b", "2", 30)])
        assert await mem.get("a") == "1"
        assert await mem.ttl("b") == 30

    async def test_incr_keeps_expiry(self, mem: MemoryStore) -> None:
        assert await mem.incr("n") == 1
        await mem.expire("n", 60)
        assert await mem.incr("n") == 2
        assert await mem.ttl("n") == 60

    async def test_keys_pattern(self, mem: MemoryStore) -> None:
        await mem.set("cache:a", "1")
        await mem.set("cache:b", "1")
        await mem.set("session:x", "1")
        assert sorted(await mem.keys("cache:*")) == ["cache:a", "cache:b"]

    async def test_wrong_type(self, mem: MemoryStore) -> None:
        await mem.sadd("s", "m")
        with pytest.raises(TypeError, match="WRONGTYPE"):
            await mem.get("s")


class TestSetsAndHashes:
    async def test_sadd_srem(self, mem: MemoryStore) -> None:
        assert await mem.sadd("s", "a", "b") == 2
        assert await mem.sadd("s", "b", "c") == 1
        assert await mem.smembers("s") == {"a", "b", "c"}
        assert await mem.scard("s") == 3
        assert await mem.srem("s", "a", "zzz") == 1

    async def test_empty_set_is_removed(self, mem: MemoryStore) -> None:
        await mem.sadd("s", "a")
        await mem.srem("s", "a")
        assert not await mem.exists("s")

    async def test_hash_counters(self, mem: MemoryStore) -> None:
        assert await mem.hincrby("h", "hits") == 1
        assert await mem.hincrby("h", "hits", 4) == 5
        assert await mem.hget("h", "hits") == "5"
        assert await mem.hget("h", "misses") is None
        assert await mem.hgetall("h") == {"hits": "5"}


class TestSortedSets:
    async def test_order_by_score_then_member(self, mem: MemoryStore) -> None:
        await mem.zadd("z", {"b": 1, "a": 1, "c": 0})
        assert await mem.zrange("z", 0, -1) == ["c", "a", "b"]
        assert await mem.zrange("z", 0, 0) == ["c"]
        assert await mem.zrange("z", -1, -1) == ["b"]

    async def test_zrangebyscore_inclusive(self, mem: MemoryStore) -> None:
        await mem.zadd("z", {"a": 10, "b": 20, "c": 30})
        assert await mem.zrangebyscore("z", 10, 20) == ["a", "b"]
        assert await mem.zrangebyscore("z", float("-inf"), 15) == ["a"]

    async def test_zadd_updates_score(self, mem: MemoryStore) -> None:
        assert await mem.zadd("z", {"a": 1}) == 1
        assert await mem.zadd("z", {"a": 5}) == 0
        assert await mem.zscore("z", "a") == 5
        assert await mem.zcard("z") == 1

    async def test_zrem(self, mem: MemoryStore) -> None:
        await mem.zadd("z", {"a": 1, "b": 2})
        assert await mem.zrem("z", "a", "missing") == 1
        assert await mem.zrem("nope", "a") == 0

    async def test_zpopmin_move(self, mem: MemoryStore) -> None:
        await mem.zadd("src", {"low": -5, "high": -10})
        assert await mem.zpopmin_move("src", "dst", 99) == "high"
        assert await mem.zrange("src", 0, -1) == ["low"]
        assert await mem.zscore("dst", "high") == 99

    async def test_zpopmin_move_empty(self, mem: MemoryStore) -> None:
        assert await mem.zpopmin_move("src", "dst", 1) is None
        assert not await mem.exists("dst")

    async def test_zmove_only_if_member(self, mem: MemoryStore) -> None:
        await mem.zadd("src", {"a": 1})
        assert await mem.zmove("src", "dst", "a", 7)
        assert not await mem.zmove("src", "dst", "a", 8)
        assert await mem.zscore("dst", "a") == 7
        assert not await mem.exists("src")

    async def test_delete_if_equals(self, mem: MemoryStore) -> None:
        await mem.set("k", "mine")
        assert not await mem.delete_if_equals("k", "theirs")
        assert await mem.get("k") == "mine"
        assert await mem.delete_if_equals("k", "mine")
        assert not await mem.exists("k")
        assert not await mem.delete_if_equals("k", "mine")


class TestLifecycle:
    async def test_flush(self, mem: MemoryStore) -> None:
        await mem.set("a", "1")
        await mem.zadd("z", {"m": 1})
        await mem.flush()
        assert await mem.keys("*") == []

    async def test_ping(self, mem: MemoryStore) -> None:
        assert await mem.ping() is True
