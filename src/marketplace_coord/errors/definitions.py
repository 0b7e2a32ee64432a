"""Concrete coordination-layer errors."""

from __future__ import annotations

from marketplace_coord.errors.coord_errors import CoordinationError

# -- Store -----------------------------------------------------------------


class StoreConnectionError(CoordinationError, ConnectionError):
    """The shared store could not be reached (fatal at startup)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="store-connection-failed")


class SerializationError(CoordinationError):
    """A stored value could not be decoded.

    Readers treat this as a miss; it is never surfaced to callers.
    """

    def __init__(self, key: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"malformed value at {key}{detail}", code="serialization-error")
        self.key = key


# -- Jobs ------------------------------------------------------------------


class HandlerNotFoundError(CoordinationError):
    """A job's type has no registered handler on its queue."""

    def __init__(self, job_type: str, queue_name: str) -> None:
        super().__init__(
            f"No handler registered for job type: {job_type} (queue {queue_name})",
            code="handler-not-found",
        )
        self.job_type = job_type
        self.queue_name = queue_name


class JobHandlerError(CoordinationError):
    """A job handler raised; the original exception is chained as ``__cause__``."""

    def __init__(self, job_id: str, job_type: str, reason: str) -> None:
        super().__init__(reason, code="job-handler-error")
        self.job_id = job_id
        self.job_type = job_type


class InvalidPayloadError(CoordinationError):
    """A job payload does not match the schema of its job type."""

    def __init__(self, job_type: str, reason: str) -> None:
        super().__init__(f"invalid payload for {job_type}: {reason}", code="invalid-payload")
        self.job_type = job_type
