"""CoordinationError — base exception class for all coordination-layer errors."""

from __future__ import annotations


class CoordinationError(Exception):
    """Base error for store, cache, session and job queue operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "coordination-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
