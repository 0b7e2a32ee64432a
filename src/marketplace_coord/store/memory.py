"""In-memory store backend with Redis-like semantics for development/testing."""

from __future__ import annotations

import fnmatch
import math
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marketplace_coord.config.settings import StoreConfig

_STRING = "string"
_SET = "set"
_HASH = "hash"
_ZSET = "zset"


class MemoryStore:
    """Single-process store supporting strings, sets, hashes and sorted sets.

    Every key carries an optional expiry timestamp; expired keys are dropped
    lazily on access, the way Redis behaves from a client's point of view.
    Empty sets, hashes and sorted sets are removed, as in Redis.
    """

    def __init__(self, config: StoreConfig) -> None:
        """Initialize the in-memory store.

        Args:
            config: Store configuration (unused for memory backend).
        """
        self._config = config
        self._data: dict[str, tuple[str, Any]] = {}
        # Format: {key: (kind, value)}
        self._expiry: dict[str, float] = {}

    async def connect(self) -> None:  # noqa: ASYNC910
        """Connect (no-op for in-memory)."""

    async def close(self) -> None:  # noqa: ASYNC910
        """Close and clear the store."""
        self._data.clear()
        self._expiry.clear()

    async def ping(self) -> bool:  # noqa: ASYNC910
        return True

    async def flush(self) -> None:  # noqa: ASYNC910
        """Clear all keys."""
        self._data.clear()
        self._expiry.clear()

    # -- internals --

    def _alive(self, key: str) -> bool:
        expiry = self._expiry.get(key)
        if expiry is not None and time.time() >= expiry:
            self._drop(key)
            return False
        return key in self._data

    def _drop(self, key: str) -> None:
        self._data.pop(key, None)
        self._expiry.pop(key, None)

    def _read(self, key: str, kind: str) -> Any:
        if not self._alive(key):
            return None
        actual, value = self._data[key]
        if actual != kind:
            msg = f"WRONGTYPE key {key} holds a {actual}, not a {kind}"
            raise TypeError(msg)
        return value

    def _write(self, key: str, kind: str, factory: type) -> Any:
        value = self._read(key, kind)
        if value is None:
            value = factory()
            self._data[key] = (kind, value)
        return value

    def _prune(self, key: str) -> None:
        entry = self._data.get(key)
        if entry is not None and not entry[1]:
            self._drop(key)

    @staticmethod
    def _sorted(zset: dict[str, float]) -> list[str]:
        return [m for m, _ in sorted(zset.items(), key=lambda item: (item[1], item[0]))]

    # -- keys / strings --

    async def get(self, key: str) -> str | None:  # noqa: ASYNC910
        return self._read(key, _STRING)

    async def mget(self, keys: list[str]) -> list[str | None]:  # noqa: ASYNC910
        return [self._read(k, _STRING) for k in keys]

    async def set(  # noqa: ASYNC910
        self, key: str, value: str, ttl: int | None = None, *, nx: bool = False
    ) -> bool:
        if nx and self._alive(key):
            return False
        self._data[key] = (_STRING, value)
        self._expiry.pop(key, None)
        if ttl is not None:
            self._expiry[key] = time.time() + ttl
        return True

    async def set_many(self, items: Iterable[tuple[str, str, int | None]]) -> None:
        for key, value, ttl in items:
            await self.set(key, value, ttl)

    async def delete(self, *keys: str) -> int:  # noqa: ASYNC910
        removed = 0
        for key in keys:
            if self._alive(key):
                self._drop(key)
                removed += 1
        return removed

    async def delete_if_equals(self, key: str, value: str) -> bool:  # noqa: ASYNC910
        if self._read(key, _STRING) != value:
            return False
        self._drop(key)
        return True

    async def exists(self, key: str) -> bool:  # noqa: ASYNC910
        return self._alive(key)

    async def expire(self, key: str, seconds: int) -> bool:  # noqa: ASYNC910
        if not self._alive(key):
            return False
        if seconds <= 0:
            self._drop(key)
        else:
            self._expiry[key] = time.time() + seconds
        return True

    async def ttl(self, key: str) -> int:  # noqa: ASYNC910
        if not self._alive(key):
            return -2
        expiry = self._expiry.get(key)
        if expiry is None:
            return -1
        return max(0, math.ceil(expiry - time.time()))

    async def incr(self, key: str) -> int:  # noqa: ASYNC910
        current = self._read(key, _STRING)
        value = int(current or 0) + 1
        # INCR keeps an existing expiry
        self._data[key] = (_STRING, str(value))
        return value

    async def keys(self, pattern: str) -> list[str]:  # noqa: ASYNC910
        return [k for k in list(self._data) if self._alive(k) and fnmatch.fnmatchcase(k, pattern)]

    # -- sets --

    async def sadd(self, key: str, *members: str) -> int:  # noqa: ASYNC910
        current: set[str] = self._write(key, _SET, set)
        before = len(current)
        current.update(members)
        return len(current) - before

    async def srem(self, key: str, *members: str) -> int:  # noqa: ASYNC910
        current: set[str] | None = self._read(key, _SET)
        if current is None:
            return 0
        removed = len(current & set(members))
        current.difference_update(members)
        self._prune(key)
        return removed

    async def smembers(self, key: str) -> set[str]:  # noqa: ASYNC910
        return set(self._read(key, _SET) or ())

    async def scard(self, key: str) -> int:  # noqa: ASYNC910
        return len(self._read(key, _SET) or ())

    # -- hashes --

    async def hget(self, key: str, field: str) -> str | None:  # noqa: ASYNC910
        current = self._read(key, _HASH)
        return None if current is None else current.get(field)

    async def hgetall(self, key: str) -> dict[str, str]:  # noqa: ASYNC910
        return dict(self._read(key, _HASH) or {})

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:  # noqa: ASYNC910
        current: dict[str, str] = self._write(key, _HASH, dict)
        value = int(current.get(field, 0)) + amount
        current[field] = str(value)
        return value

    # -- sorted sets --

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:  # noqa: ASYNC910
        current: dict[str, float] = self._write(key, _ZSET, dict)
        added = sum(1 for member in mapping if member not in current)
        current.update({m: float(s) for m, s in mapping.items()})
        return added

    async def zrem(self, key: str, *members: str) -> int:  # noqa: ASYNC910
        current: dict[str, float] | None = self._read(key, _ZSET)
        if current is None:
            return 0
        removed = 0
        for member in members:
            if current.pop(member, None) is not None:
                removed += 1
        self._prune(key)
        return removed

    async def zrange(self, key: str, start: int, stop: int) -> list[str]:  # noqa: ASYNC910
        ordered = self._sorted(self._read(key, _ZSET) or {})
        size = len(ordered)
        if start < 0:
            start = max(size + start, 0)
        if stop < 0:
            stop = size + stop
        return ordered[start : stop + 1]

    async def zrangebyscore(  # noqa: ASYNC910
        self, key: str, min_score: float, max_score: float
    ) -> list[str]:
        current = self._read(key, _ZSET) or {}
        return [m for m in self._sorted(current) if min_score <= current[m] <= max_score]

    async def zcard(self, key: str) -> int:  # noqa: ASYNC910
        return len(self._read(key, _ZSET) or {})

    async def zscore(self, key: str, member: str) -> float | None:  # noqa: ASYNC910
        current = self._read(key, _ZSET)
        return None if current is None else current.get(member)

    async def zpopmin_move(self, src: str, dst: str, score: float) -> str | None:  # noqa: ASYNC910
        current: dict[str, float] | None = self._read(src, _ZSET)
        if not current:
            return None
        member = self._sorted(current)[0]
        del current[member]
        self._prune(src)
        self._write(dst, _ZSET, dict)[member] = float(score)
        return member

    async def zmove(self, src: str, dst: str, member: str, score: float) -> bool:  # noqa: ASYNC910
        current: dict[str, float] | None = self._read(src, _ZSET)
        if current is None or member not in current:
            return False
        del current[member]
        self._prune(src)
        self._write(dst, _ZSET, dict)[member] = float(score)
        return True
