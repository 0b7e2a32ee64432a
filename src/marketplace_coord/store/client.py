"""Store client abstraction with Redis and in-memory backends."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Protocol

from marketplace_coord.config.settings import StoreEngine

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marketplace_coord.config.settings import StoreConfig

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock:"


class StoreClient:
    """Shared key/value store that delegates to Redis or the in-memory backend.

    The cache, session store and job queues all talk to the store through
    this client, so a single connection is shared by every subsystem.
    """

    def __init__(self, config: StoreConfig) -> None:
        """Initialize store client with configuration.

        Args:
            config: Store configuration with engine type and connection params.
        """
        self._config = config
        self._backend: StoreBackend | None = None
        self._connected = False

    async def connect(self) -> None:
        """Connect to the store backend.

        Raises:
            ValueError: If store engine type is invalid.
            StoreConnectionError: If the backend is unreachable.
        """
        if self._connected:
            return

        from marketplace_coord.store.memory import MemoryStore
        from marketplace_coord.store.redis import RedisStore

        engine = str(self._config.engine).lower()

        if engine == StoreEngine.REDIS:
            self._backend = RedisStore(self._config)
        elif engine == StoreEngine.MEMORY:
            self._backend = MemoryStore(self._config)
        else:
            msg = f"Unsupported store engine: {engine}"
            raise ValueError(msg)

        try:
            await self._backend.connect()
        except Exception:
            self._backend = None
            raise
        self._connected = True
        logger.info("Store client connected (%s)", engine)

    async def close(self) -> None:
        """Close the store connection (idempotent)."""
        if self._backend is not None:
            await self._backend.close()
            self._backend = None
            logger.info("Store client disconnected")
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if the store is connected."""
        return self._connected and self._backend is not None

    @property
    def backend(self) -> StoreBackend:
        """Return the connected backend.

        Raises:
            RuntimeError: If not connected.
        """
        if not self._connected or self._backend is None:
            msg = "Store not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._backend

    async def ping(self) -> bool:
        """Round-trip to the backend."""
        return await self.backend.ping()

    async def flush(self) -> None:
        """Flush all keys from the store (development/testing only)."""
        await self.backend.flush()

    # -- keys / strings --

    async def get(self, key: str) -> str | None:
        """Get a string value, or None if missing or expired."""
        return await self.backend.get(key)

    async def mget(self, keys: list[str]) -> list[str | None]:
        """Get several string values in key order."""
        return await self.backend.mget(keys)

    async def set(self, key: str, value: str, ttl: int | None = None, *, nx: bool = False) -> bool:
        """Set a string value.

        Args:
            key: Store key.
            value: Value to store (string).
            ttl: Time-to-live in seconds. None = no expiry.
            nx: Only set the key if it does not already exist.

        Returns:
            True if the value was written.
        """
        return await self.backend.set(key, value, ttl, nx=nx)

    async def set_many(self, items: Iterable[tuple[str, str, int | None]]) -> None:
        """Set several ``(key, value, ttl)`` string entries in one batch."""
        await self.backend.set_many(items)

    async def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed."""
        return await self.backend.delete(*keys)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete *key* only while it still holds *value*."""
        return await self.backend.delete_if_equals(key, value)

    async def exists(self, key: str) -> bool:
        return await self.backend.exists(key)

    async def expire(self, key: str, seconds: int) -> bool:
        return await self.backend.expire(key, seconds)

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 without expiry, -2 if missing."""
        return await self.backend.ttl(key)

    async def incr(self, key: str) -> int:
        return await self.backend.incr(key)

    async def keys(self, pattern: str) -> list[str]:
        """Return all keys matching a glob-style *pattern*."""
        return await self.backend.keys(pattern)

    # -- sets --

    async def sadd(self, key: str, *members: str) -> int:
        return await self.backend.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        return await self.backend.srem(key, *members)

    async def smembers(self, key: str) -> set[str]:
        return await self.backend.smembers(key)

    async def scard(self, key: str) -> int:
        return await self.backend.scard(key)

    # -- hashes --

    async def hget(self, key: str, field: str) -> str | None:
        return await self.backend.hget(key, field)

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self.backend.hgetall(key)

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        return await self.backend.hincrby(key, field, amount)

    # -- sorted sets --

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        return await self.backend.zadd(key, mapping)

    async def zrem(self, key: str, *members: str) -> int:
        return await self.backend.zrem(key, *members)

    async def zrange(self, key: str, start: int, stop: int) -> list[str]:
        """Members by ascending score, inclusive index range."""
        return await self.backend.zrange(key, start, stop)

    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[str]:
        """Members whose score lies in ``[min_score, max_score]``."""
        return await self.backend.zrangebyscore(key, min_score, max_score)

    async def zcard(self, key: str) -> int:
        return await self.backend.zcard(key)

    async def zscore(self, key: str, member: str) -> float | None:
        return await self.backend.zscore(key, member)

    async def zpopmin_move(self, src: str, dst: str, score: float) -> str | None:
        """Atomically pop the lowest-scored member of *src* into *dst*.

        Two consumers calling this concurrently never receive the same member.

        Returns:
            The claimed member, or None if *src* is empty.
        """
        return await self.backend.zpopmin_move(src, dst, score)

    async def zmove(self, src: str, dst: str, member: str, score: float) -> bool:
        """Atomically move *member* from *src* to *dst* with a new score.

        Returns:
            False if *member* was no longer in *src* (nothing is written).
        """
        return await self.backend.zmove(src, dst, member, score)

    # -- locks --

    async def acquire_lock(self, resource: str, ttl: int) -> str | None:
        """Take the lock on *resource* for *ttl* seconds.

        Returns:
            A token to pass to :meth:`release_lock`, or None if the lock is
            held by someone else.
        """
        token = uuid.uuid4().hex
        if await self.backend.set(f"{LOCK_PREFIX}{resource}", token, ttl, nx=True):
            return token
        return None

    async def release_lock(self, resource: str, token: str) -> bool:
        """Release *resource* if *token* still owns it.

        Returns:
            False if the lock had expired or was taken over by another holder.
        """
        return await self.backend.delete_if_equals(f"{LOCK_PREFIX}{resource}", token)


class StoreBackend(Protocol):
    """Protocol for store backend implementations."""

    async def connect(self) -> None: ...
    async def close(self) -> None: ...
    async def ping(self) -> bool: ...
    async def flush(self) -> None: ...
    async def get(self, key: str) -> str | None: ...
    async def mget(self, keys: list[str]) -> list[str | None]: ...
    async def set(
        self, key: str, value: str, ttl: int | None = None, *, nx: bool = False
    ) -> bool: ...
    async def set_many(self, items: Iterable[tuple[str, str, int | None]]) -> None: ...
    async def delete(self, *keys: str) -> int: ...
    async def delete_if_equals(self, key: str, value: str) -> bool: ...
    async def exists(self, key: str) -> bool: ...
    async def expire(self, key: str, seconds: int) -> bool: ...
    async def ttl(self, key: str) -> int: ...
    async def incr(self, key: str) -> int: ...
    async def keys(self, pattern: str) -> list[str]: ...
    async def sadd(self, key: str, *members: str) -> int: ...
    async def srem(self, key: str, *members: str) -> int: ...
    async def smembers(self, key: str) -> set[str]: ...
    async def scard(self, key: str) -> int: ...
    async def hget(self, key: str, field: str) -> str | None: ...
    async def hgetall(self, key: str) -> dict[str, str]: ...
    async def hincrby(self, key: str, field: str, amount: int = 1) -> int: ...
    async def zadd(self, key: str, mapping: dict[str, float]) -> int: ...
    async def zrem(self, key: str, *members: str) -> int: ...
    async def zrange(self, key: str, start: int, stop: int) -> list[str]: ...
    async def zrangebyscore(self, key: str, min_score: float, max_score: float) -> list[str]: ...
    async def zcard(self, key: str) -> int: ...
    async def zscore(self, key: str, member: str) -> float | None: ...
    async def zpopmin_move(self, src: str, dst: str, score: float) -> str | None: ...
    async def zmove(self, src: str, dst: str, member: str, score: float) -> bool: ...
