"""Store — shared key/value primitives (strings, sets, hashes, sorted sets)."""

from __future__ import annotations

from marketplace_coord.store.client import StoreBackend, StoreClient

__all__ = ["StoreBackend", "StoreClient"]
