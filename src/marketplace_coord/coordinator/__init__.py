"""Coordinator — process-level composition of store, cache, sessions and queues."""

from __future__ import annotations

from marketplace_coord.coordinator.service import (
    QUEUE_DEFAULT,
    QUEUE_NOTIFICATIONS,
    QUEUE_REMINDERS,
    QUEUE_ROUTES,
    Coordinator,
    VendorNotificationKind,
)

__all__ = [
    "QUEUE_DEFAULT",
    "QUEUE_NOTIFICATIONS",
    "QUEUE_REMINDERS",
    "QUEUE_ROUTES",
    "Coordinator",
    "VendorNotificationKind",
]
