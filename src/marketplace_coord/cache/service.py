"""Cache store — JSON values with TTL, batch ops, tags and hit/miss counters.

Keys are namespaced by a prefix (``cache:`` by default). Tag indices live
under ``{prefix}tag:{tag}`` as sets of full cache keys.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from marketplace_coord.errors import SerializationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from marketplace_coord.config.settings import CacheConfig
    from marketplace_coord.metrics.collector import CoordinationMetrics
    from marketplace_coord.store.client import StoreClient

logger = logging.getLogger(__name__)

STATS_KEY = "cache_meta:stats"
_TAG_SEGMENT = "tag:"


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters and the number of live cache entries."""

    hits: int
    misses: int
    keys: int

    def to_dict(self) -> dict[str, int]:
        """Serialize to a plain dict."""
        return asdict(self)


class CacheStore:
    """TTL cache on top of the shared store.

    Counters are incremented outside of any transaction and may drift under
    concurrent access; they are indicative, not exact.
    """

    def __init__(
        self,
        store: StoreClient,
        config: CacheConfig,
        *,
        metrics: CoordinationMetrics | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._metrics = metrics

    @property
    def default_ttl(self) -> int:
        return self._config.default_ttl

    def _key(self, key: str, prefix: str | None) -> str:
        return f"{prefix if prefix is not None else self._config.prefix}{key}"

    def _tag_key(self, tag: str, prefix: str | None) -> str:
        return self._key(f"{_TAG_SEGMENT}{tag}", prefix)

    @staticmethod
    def _decode(full_key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as e:
            raise SerializationError(full_key, str(e)) from e

    async def _count(self, *, hit: bool) -> None:
        await self._store.hincrby(STATS_KEY, "hits" if hit else "misses", 1)
        if self._metrics:
            self._metrics.record_cache_lookup(hit=hit)

    # ------------------------------------------------------------------
    # Single-key operations
    # ------------------------------------------------------------------

    async def set(
        self, key: str, value: Any, *, ttl: int | None = None, prefix: str | None = None
    ) -> None:
        """Store *value* as JSON under *key* for *ttl* seconds (default 1h)."""
        await self._store.set(self._key(key, prefix), json.dumps(value), ttl or self.default_ttl)

    async def get(self, key: str, *, prefix: str | None = None) -> Any | None:
        """Return the cached value, or None on a miss.

        A value that cannot be decoded counts as a miss.
        """
        full_key = self._key(key, prefix)
        raw = await self._store.get(full_key)
        if raw is None:
            await self._count(hit=False)
            return None
        try:
            value = self._decode(full_key, raw)
        except SerializationError as e:
            logger.warning("Cache get error: %s", e)
            await self._count(hit=False)
            return None
        await self._count(hit=True)
        return value

    async def delete(self, key: str, *, prefix: str | None = None) -> bool:
        return await self._store.delete(self._key(key, prefix)) > 0

    async def exists(self, key: str, *, prefix: str | None = None) -> bool:
        return await self._store.exists(self._key(key, prefix))

    async def get_or_set(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        *,
        ttl: int | None = None,
        prefix: str | None = None,
    ) -> Any:
        """Return the cached value or compute, store and return it.

        Not atomic: concurrent callers can all miss and all compute. Fine for
        caching; never use it as a lock.
        """
        cached = await self.get(key, prefix=prefix)
        if cached is not None:
            return cached
        value = await compute_fn()
        await self.set(key, value, ttl=ttl, prefix=prefix)
        return value

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def set_multiple(
        self,
        entries: Iterable[tuple[str, Any] | tuple[str, Any, int | None]],
        *,
        ttl: int | None = None,
        prefix: str | None = None,
    ) -> None:
        """Store several ``(key, value[, ttl])`` entries in one batch.

        A per-entry TTL wins over *ttl*, which wins over the default.
        """
        items: list[tuple[str, str, int | None]] = []
        for entry in entries:
            key, value = entry[0], entry[1]
            entry_ttl = entry[2] if len(entry) > 2 else None  # noqa: PLR2004
            final_ttl = entry_ttl or ttl or self.default_ttl
            items.append((self._key(key, prefix), json.dumps(value), final_ttl))
        if items:
            await self._store.set_many(items)

    async def get_multiple(
        self, keys: list[str], *, prefix: str | None = None
    ) -> dict[str, Any | None]:
        """Return ``{key: value_or_None}`` for *keys* in a single round trip."""
        full_keys = [self._key(k, prefix) for k in keys]
        raw_values = await self._store.mget(full_keys)
        result: dict[str, Any | None] = {}
        for key, full_key, raw in zip(keys, full_keys, raw_values, strict=True):
            if raw is None:
                result[key] = None
                await self._count(hit=False)
                continue
            try:
                result[key] = self._decode(full_key, raw)
            except SerializationError as e:
                logger.warning("Cache parse error for key %s: %s", key, e)
                result[key] = None
                await self._count(hit=False)
            else:
                await self._count(hit=True)
        return result

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def set_with_tags(
        self,
        key: str,
        value: Any,
        tags: Iterable[str],
        *,
        ttl: int | None = None,
        prefix: str | None = None,
    ) -> None:
        """Store *value* and index it under each tag for group invalidation.

        A tag index never expires before the longest-lived entry it points to.
        """
        final_ttl = ttl or self.default_ttl
        full_key = self._key(key, prefix)
        await self.set(key, value, ttl=final_ttl, prefix=prefix)
        for tag in tags:
            tag_key = self._tag_key(tag, prefix)
            await self._store.sadd(tag_key, full_key)
            current = await self._store.ttl(tag_key)
            if current < final_ttl:
                await self._store.expire(tag_key, final_ttl)

    async def invalidate_by_tags(self, tags: Iterable[str], *, prefix: str | None = None) -> int:
        """Delete every entry indexed under any of *tags*, plus the tag indices.

        Returns:
            Number of cache entries removed (tag indices are not counted).
        """
        tag_keys = [self._tag_key(tag, prefix) for tag in tags]
        members: set[str] = set()
        for tag_key in tag_keys:
            members |= await self._store.smembers(tag_key)
        removed = await self._store.delete(*members) if members else 0
        if tag_keys:
            await self._store.delete(*tag_keys)
        return removed

    async def clear_prefix(self, prefix: str | None = None) -> int:
        """Delete every key starting with *prefix* (default: the cache prefix)."""
        keys = await self._store.keys(f"{prefix or self._config.prefix}*")
        if not keys:
            return 0
        return await self._store.delete(*keys)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def stats(self) -> CacheStats:
        """Return hit/miss counters and the number of live cache entries."""
        counters = await self._store.hgetall(STATS_KEY)
        prefix = self._config.prefix
        keys = [
            k
            for k in await self._store.keys(f"{prefix}*")
            if not k.startswith(f"{prefix}{_TAG_SEGMENT}")
        ]
        return CacheStats(
            hits=int(counters.get("hits", 0)),
            misses=int(counters.get("misses", 0)),
            keys=len(keys),
        )

    async def reset_stats(self) -> None:
        await self._store.delete(STATS_KEY)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def check_rate_limit(
        self,
        subject: str,
        action: str,
        *,
        max_requests: int = 10,
        window_ms: int = 60_000,
    ) -> bool:
        """Fixed-window rate limit; True if this request is allowed.

        The counter is bumped with INCR so concurrent requests are all counted.
        """
        window = int(time.time() * 1000) // window_ms
        key = f"rate_limit:{subject}:{action}:{window}"
        count = await self._store.incr(key)
        if count == 1:
            await self._store.expire(key, max(1, -(-window_ms // 1000)))
        return count <= max_requests
