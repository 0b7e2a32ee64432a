"""Job data models.

Job types form a closed set; each type carries its own payload schema so a
producer cannot enqueue a job its handler would not understand.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, Field


class JobType(enum.StrEnum):
    """Every kind of job the coordination layer knows how to run."""

    VENDOR_CART_ADD = "vendor_cart_add"
    VENDOR_WISHLIST_ADD = "vendor_wishlist_add"
    RESPONSE_REMINDER = "response_reminder"
    ALTERNATIVE_VENDOR_RECOMMENDATION = "alternative_vendor_recommendation"
    CLEANUP_EXPIRED_SESSIONS = "cleanup_expired_sessions"
    CACHE_WARMUP = "cache_warmup"


class JobState(enum.StrEnum):
    """The five mutually exclusive job indices of a queue."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class VendorNotificationPayload(BaseModel):
    """A client added one of the vendor's services to a cart or wishlist."""

    vendor_id: str
    client_id: str
    service_id: str


class ResponseReminderPayload(BaseModel):
    """A vendor has not answered a client conversation yet."""

    vendor_id: str
    client_id: str
    conversation_id: str
    hours_elapsed: float = Field(ge=0)


class AlternativeVendorPayload(BaseModel):
    """Suggest other vendors to a client whose vendor stayed silent."""

    client_id: str
    original_vendor_id: str
    conversation_id: str


class SessionCleanupPayload(BaseModel):
    """Prune expired session ids; an empty list means every user."""

    user_ids: list[str] = Field(default_factory=list)


class CacheWarmupPayload(BaseModel):
    keys: list[str]


PAYLOAD_SCHEMAS: dict[JobType, type[BaseModel]] = {
    JobType.VENDOR_CART_ADD: VendorNotificationPayload,
    JobType.VENDOR_WISHLIST_ADD: VendorNotificationPayload,
    JobType.RESPONSE_REMINDER: ResponseReminderPayload,
    JobType.ALTERNATIVE_VENDOR_RECOMMENDATION: AlternativeVendorPayload,
    JobType.CLEANUP_EXPIRED_SESSIONS: SessionCleanupPayload,
    JobType.CACHE_WARMUP: CacheWarmupPayload,
}


# ---------------------------------------------------------------------------
# Job record
# ---------------------------------------------------------------------------


class Job(BaseModel):
    """A unit of deferred work, stored as JSON under ``job:{id}``."""

    id: str
    type: JobType
    data: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    attempts: int = 0
    max_attempts: int = Field(default=3, ge=1)
    delay: int = Field(default=0, ge=0, description="Initial delay in milliseconds")
    created_at: datetime
    scheduled_for: datetime
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None

    def payload(self) -> BaseModel:
        """Return ``data`` parsed with the schema of this job's type."""
        return PAYLOAD_SCHEMAS[self.type].model_validate(self.data)


class QueueStats(BaseModel):
    """Cardinality of each job index."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


JobHandler = Callable[[Job], Awaitable[None]]
