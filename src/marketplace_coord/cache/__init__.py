"""Cache — TTL cache with tag invalidation on the shared store."""

from __future__ import annotations

from marketplace_coord.cache.service import CacheStats, CacheStore

__all__ = ["CacheStats", "CacheStore"]
