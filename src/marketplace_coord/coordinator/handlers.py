"""Domain job handlers — vendor notifications, reminders, housekeeping.

Handlers record their results in the cache, where the notification
service picks them up:

- ``notification:{vendor}:{ms}``                  (7 days)
- ``reminder:{vendor}:{conversation}:{hours}h``   (24 h)
- ``recommendation:{client}:{conversation}``      (7 days)
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from marketplace_coord.jobs.models import (
    AlternativeVendorPayload,
    CacheWarmupPayload,
    JobType,
    ResponseReminderPayload,
    SessionCleanupPayload,
    VendorNotificationPayload,
)

if TYPE_CHECKING:
    from marketplace_coord.cache.service import CacheStore
    from marketplace_coord.jobs.models import Job
    from marketplace_coord.session.service import SessionStore

logger = logging.getLogger(__name__)

NOTIFICATION_TTL = 7 * 24 * 60 * 60
REMINDER_TTL = 24 * 60 * 60
RECOMMENDATION_TTL = 7 * 24 * 60 * 60

_NOTIFICATION_KINDS = {
    JobType.VENDOR_CART_ADD: "cart_add",
    JobType.VENDOR_WISHLIST_ADD: "wishlist_add",
}


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat()


async def handle_vendor_notification(job: Job, *, cache: CacheStore) -> None:
    """Record a cart/wishlist notification for the vendor."""
    payload = VendorNotificationPayload.model_validate(job.data)
    kind = _NOTIFICATION_KINDS[job.type]
    logger.info(
        "Processing vendor %s notification: vendor=%s, client=%s, service=%s",
        kind,
        payload.vendor_id,
        payload.client_id,
        payload.service_id,
    )
    await cache.set(
        f"notification:{payload.vendor_id}:{int(time.time() * 1000)}",
        {"type": kind, **payload.model_dump(), "timestamp": _timestamp()},
        ttl=NOTIFICATION_TTL,
    )


async def handle_response_reminder(job: Job, *, cache: CacheStore) -> None:
    """Record a reminder that the vendor still owes the client a reply."""
    payload = ResponseReminderPayload.model_validate(job.data)
    logger.info(
        "Processing response reminder: vendor=%s, client=%s, hours=%g",
        payload.vendor_id,
        payload.client_id,
        payload.hours_elapsed,
    )
    await cache.set(
        f"reminder:{payload.vendor_id}:{payload.conversation_id}:{payload.hours_elapsed:g}h",
        {"type": JobType.RESPONSE_REMINDER.value, **payload.model_dump(), "timestamp": _timestamp()},
        ttl=REMINDER_TTL,
    )


async def handle_alternative_vendor_recommendation(job: Job, *, cache: CacheStore) -> None:
    """Record that the client should be offered other vendors."""
    payload = AlternativeVendorPayload.model_validate(job.data)
    logger.info(
        "Processing alternative vendor recommendation: client=%s, original_vendor=%s",
        payload.client_id,
        payload.original_vendor_id,
    )
    await cache.set(
        f"recommendation:{payload.client_id}:{payload.conversation_id}",
        {
            "type": JobType.ALTERNATIVE_VENDOR_RECOMMENDATION.value,
            **payload.model_dump(),
            "timestamp": _timestamp(),
        },
        ttl=RECOMMENDATION_TTL,
    )


async def handle_session_cleanup(job: Job, *, sessions: SessionStore) -> None:
    """Drop ids of expired sessions from the per-user indices."""
    payload = SessionCleanupPayload.model_validate(job.data)
    user_ids = payload.user_ids or await sessions.user_ids()
    pruned = 0
    for user_id in user_ids:
        pruned += await sessions.prune_user_index(user_id)
    stats = await sessions.get_session_stats()
    logger.info(
        "Session cleanup completed: pruned=%d, active sessions=%d",
        pruned,
        stats.active_sessions,
    )


async def handle_cache_warmup(job: Job, *, cache: CacheStore) -> None:
    """Report which of the requested cache keys are already warm."""
    payload = CacheWarmupPayload.model_validate(job.data)
    missing = [key for key in payload.keys if not await cache.exists(key)]
    logger.info(
        "Cache warmup checked %d keys (%d cold): %s",
        len(payload.keys),
        len(missing),
        ", ".join(missing) or "-",
    )
