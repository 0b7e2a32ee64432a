"""Jobs — priority/delayed job queues with retry and exponential backoff.

Each :class:`JobQueue` is bound to a queue name on the shared store and runs
its own asyncio processing loop, dispatching at most one job per tick.
"""

from __future__ import annotations

from marketplace_coord.jobs.models import (
    PAYLOAD_SCHEMAS,
    AlternativeVendorPayload,
    CacheWarmupPayload,
    Job,
    JobHandler,
    JobState,
    JobType,
    QueueStats,
    ResponseReminderPayload,
    SessionCleanupPayload,
    VendorNotificationPayload,
)
from marketplace_coord.jobs.queue import JobQueue

__all__ = [
    "PAYLOAD_SCHEMAS",
    "AlternativeVendorPayload",
    "CacheWarmupPayload",
    "Job",
    "JobHandler",
    "JobQueue",
    "JobState",
    "JobType",
    "QueueStats",
    "ResponseReminderPayload",
    "SessionCleanupPayload",
    "VendorNotificationPayload",
]
