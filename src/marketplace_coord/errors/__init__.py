"""Error taxonomy for the coordination layer."""

from __future__ import annotations

from marketplace_coord.errors.coord_errors import CoordinationError
from marketplace_coord.errors.definitions import (
    HandlerNotFoundError,
    InvalidPayloadError,
    JobHandlerError,
    SerializationError,
    StoreConnectionError,
)

__all__ = [
    "CoordinationError",
    "HandlerNotFoundError",
    "InvalidPayloadError",
    "JobHandlerError",
    "SerializationError",
    "StoreConnectionError",
]
