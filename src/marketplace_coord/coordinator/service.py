"""Coordinator — composes the store, cache, sessions and job queues.

One coordinator owns one store connection, one :class:`CacheStore`, one
:class:`SessionStore` and three :class:`JobQueue` instances (``default``,
``notifications``, ``reminders``). It is constructed explicitly and passed
to whoever needs it, so several isolated coordinators can coexist.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
import time
from typing import TYPE_CHECKING, Any

from marketplace_coord.cache.service import CacheStore
from marketplace_coord.config.settings import AppConfig
from marketplace_coord.coordinator import handlers
from marketplace_coord.jobs.models import (
    AlternativeVendorPayload,
    CacheWarmupPayload,
    JobType,
    ResponseReminderPayload,
    SessionCleanupPayload,
    VendorNotificationPayload,
)
from marketplace_coord.jobs.queue import JobQueue
from marketplace_coord.metrics.collector import CoordinationMetrics
from marketplace_coord.session.service import SessionStore
from marketplace_coord.store.client import StoreClient
from marketplace_coord.taskmanager.manager import CronJob, TaskManager

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

QUEUE_DEFAULT = "default"
QUEUE_NOTIFICATIONS = "notifications"
QUEUE_REMINDERS = "reminders"

# Which queue runs which job types
QUEUE_ROUTES: dict[str, tuple[JobType, ...]] = {
    QUEUE_DEFAULT: (JobType.CLEANUP_EXPIRED_SESSIONS, JobType.CACHE_WARMUP),
    QUEUE_NOTIFICATIONS: (JobType.VENDOR_CART_ADD, JobType.VENDOR_WISHLIST_ADD),
    QUEUE_REMINDERS: (JobType.RESPONSE_REMINDER, JobType.ALTERNATIVE_VENDOR_RECOMMENDATION),
}

# Fixed priorities of the domain scheduling helpers
VENDOR_NOTIFICATION_PRIORITY = 5
RESPONSE_REMINDER_PRIORITY = 3
ALTERNATIVE_VENDOR_PRIORITY = 2


class VendorNotificationKind(enum.StrEnum):
    """What the client did with the vendor's service."""

    CART_ADD = "cart_add"
    WISHLIST_ADD = "wishlist_add"


class Coordinator:
    """Process-level owner of the coordination layer.

    Usage::

        coordinator = Coordinator(AppConfig())
        await coordinator.initialize()
        job_id = await coordinator.schedule_vendor_notification(
            "cart_add", vendor_id, client_id, service_id
        )
        ...
        await coordinator.shutdown()
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: StoreClient | None = None,
        metrics: CoordinationMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or AppConfig()
        self._store = store or StoreClient(self._config.store)
        if metrics is None and self._config.metrics.enabled:
            metrics = CoordinationMetrics()
        self._metrics = metrics
        self._initialized = False

        self.cache = CacheStore(self._store, self._config.cache, metrics=metrics)
        self.session = SessionStore(self._store, self._config.session)

        queue_config = self._config.queue
        self.job_queue = JobQueue(
            self._store, queue_config, QUEUE_DEFAULT, metrics=metrics, clock=clock
        )
        self.notification_queue = JobQueue(
            self._store, queue_config, QUEUE_NOTIFICATIONS, metrics=metrics, clock=clock
        )
        self.reminder_queue = JobQueue(
            self._store, queue_config, QUEUE_REMINDERS, metrics=metrics, clock=clock
        )
        self._task_manager = TaskManager(store=self._store, metrics=metrics)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> StoreClient:
        return self._store

    @property
    def metrics(self) -> CoordinationMetrics | None:
        return self._metrics

    @property
    def task_manager(self) -> TaskManager:
        return self._task_manager

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def queues(self) -> dict[str, JobQueue]:
        """Job queues by name."""
        return {
            QUEUE_DEFAULT: self.job_queue,
            QUEUE_NOTIFICATIONS: self.notification_queue,
            QUEUE_REMINDERS: self.reminder_queue,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect the store, register handlers and start every queue.

        A failure after connecting stops whatever was started and closes the
        store before the error propagates.

        Raises:
            StoreConnectionError: If the store is unreachable (logged, not retried).
            RuntimeError: If a routed job type has no handler.
        """
        if self._initialized:
            return
        try:
            await self._store.connect()
        except Exception:
            logger.exception("Failed to initialize coordination layer")
            raise

        try:
            self._setup_job_handlers()
            self._verify_job_handlers()

            queue_config = self._config.queue
            await self.job_queue.start_processing(queue_config.default_interval_ms)
            await self.notification_queue.start_processing(queue_config.notifications_interval_ms)
            await self.reminder_queue.start_processing(queue_config.reminders_interval_ms)

            self._setup_maintenance()
            await self._task_manager.start()
        except Exception:
            logger.exception("Failed to initialize coordination layer; releasing the store")
            try:
                await self.shutdown()
            except Exception:
                logger.warning("Cleanup after failed initialization did not complete")
            raise

        self._initialized = True
        logger.info("Coordination layer initialized")

    async def shutdown(self) -> None:
        """Stop all queues and maintenance jobs, then disconnect the store."""
        try:
            for queue in self.queues.values():
                await queue.stop_processing()
            await self._task_manager.stop()
            await self._store.close()
        except Exception:
            logger.exception("Error during coordination layer shutdown")
            raise
        finally:
            self._initialized = False
        logger.info("Coordination layer shutdown completed")

    def _setup_job_handlers(self) -> None:
        self.notification_queue.register_handler(
            JobType.VENDOR_CART_ADD,
            functools.partial(handlers.handle_vendor_notification, cache=self.cache),
        )
        self.notification_queue.register_handler(
            JobType.VENDOR_WISHLIST_ADD,
            functools.partial(handlers.handle_vendor_notification, cache=self.cache),
        )
        self.reminder_queue.register_handler(
            JobType.RESPONSE_REMINDER,
            functools.partial(handlers.handle_response_reminder, cache=self.cache),
        )
        self.reminder_queue.register_handler(
            JobType.ALTERNATIVE_VENDOR_RECOMMENDATION,
            functools.partial(handlers.handle_alternative_vendor_recommendation, cache=self.cache),
        )
        self.job_queue.register_handler(
            JobType.CLEANUP_EXPIRED_SESSIONS,
            functools.partial(handlers.handle_session_cleanup, sessions=self.session),
        )
        self.job_queue.register_handler(
            JobType.CACHE_WARMUP,
            functools.partial(handlers.handle_cache_warmup, cache=self.cache),
        )

    def _verify_job_handlers(self) -> None:
        missing = {
            name: self.queues[name].missing_handlers(job_types)
            for name, job_types in QUEUE_ROUTES.items()
        }
        missing = {name: types for name, types in missing.items() if types}
        if missing:
            msg = f"Job types without handlers: {missing}"
            raise RuntimeError(msg)

    def _setup_maintenance(self) -> None:
        queue_config = self._config.queue
        lock_ttl = max(1, int(queue_config.cleanup_period) - 1)
        for name, queue in self.queues.items():
            self._task_manager.register(
                f"cleanup_completed_jobs:{name}",
                CronJob(
                    handler=functools.partial(self._cleanup_queue, queue),
                    period=queue_config.cleanup_period,
                    lock_ttl=lock_ttl,
                ),
            )

    @staticmethod
    async def _cleanup_queue(queue: JobQueue) -> None:
        await queue.cleanup_completed_jobs()

    # ------------------------------------------------------------------
    # Health and stats
    # ------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """Check every subsystem; never raises.

        Returns:
            ``{"store": bool, "session": bool, "cache": bool,
            "queues": {name: bool}}``. False marks a degraded subsystem.
        """

        async def healthy(check: Callable[[], Any]) -> bool:
            try:
                await check()
            except Exception:
                logger.exception("Health check failed")
                return False
            return True

        store_ok = False
        try:
            store_ok = await self._store.ping()
        except Exception:
            logger.exception("Store health check failed")

        session_ok = await healthy(self.session.get_session_stats)
        cache_ok = await healthy(self.cache.stats)
        queue_results = await asyncio.gather(
            *(healthy(queue.get_stats) for queue in self.queues.values())
        )
        return {
            "store": store_ok,
            "session": session_ok,
            "cache": cache_ok,
            "queues": dict(zip(self.queues, queue_results, strict=True)),
        }

    async def get_stats(self) -> dict[str, Any]:
        """Aggregate statistics of the session store, cache and every queue."""
        session_stats = await self.session.get_session_stats()
        cache_stats = await self.cache.stats()
        queue_stats = {name: await queue.get_stats() for name, queue in self.queues.items()}
        return {
            "session": session_stats.model_dump(),
            "cache": cache_stats.to_dict(),
            "queues": {name: stats.model_dump() for name, stats in queue_stats.items()},
        }

    # ------------------------------------------------------------------
    # Domain scheduling
    # ------------------------------------------------------------------

    async def schedule_vendor_notification(
        self,
        kind: VendorNotificationKind | str,
        vendor_id: str,
        client_id: str,
        service_id: str,
    ) -> str:
        """Notify a vendor that a client added their service to a cart or wishlist."""
        job_type = (
            JobType.VENDOR_CART_ADD
            if VendorNotificationKind(kind) == VendorNotificationKind.CART_ADD
            else JobType.VENDOR_WISHLIST_ADD
        )
        return await self.notification_queue.add_job(
            job_type,
            VendorNotificationPayload(
                vendor_id=vendor_id, client_id=client_id, service_id=service_id
            ),
            priority=VENDOR_NOTIFICATION_PRIORITY,
        )

    async def schedule_response_reminder(
        self,
        vendor_id: str,
        client_id: str,
        conversation_id: str,
        hours_elapsed: float,
        delay_ms: int,
    ) -> str:
        """Remind a vendor to answer a conversation after *delay_ms*."""
        return await self.reminder_queue.add_job(
            JobType.RESPONSE_REMINDER,
            ResponseReminderPayload(
                vendor_id=vendor_id,
                client_id=client_id,
                conversation_id=conversation_id,
                hours_elapsed=hours_elapsed,
            ),
            priority=RESPONSE_REMINDER_PRIORITY,
            delay=delay_ms,
        )

    async def schedule_alternative_vendor_recommendation(
        self,
        client_id: str,
        original_vendor_id: str,
        conversation_id: str,
        delay_ms: int,
    ) -> str:
        """Offer the client other vendors after *delay_ms* without a reply."""
        return await self.reminder_queue.add_job(
            JobType.ALTERNATIVE_VENDOR_RECOMMENDATION,
            AlternativeVendorPayload(
                client_id=client_id,
                original_vendor_id=original_vendor_id,
                conversation_id=conversation_id,
            ),
            priority=ALTERNATIVE_VENDOR_PRIORITY,
            delay=delay_ms,
        )

    async def schedule_session_cleanup(
        self, user_ids: list[str] | None = None, *, delay_ms: int = 0
    ) -> str:
        return await self.job_queue.add_job(
            JobType.CLEANUP_EXPIRED_SESSIONS,
            SessionCleanupPayload(user_ids=user_ids or []),
            delay=delay_ms,
        )

    async def schedule_cache_warmup(self, keys: list[str]) -> str:
        return await self.job_queue.add_job(JobType.CACHE_WARMUP, CacheWarmupPayload(keys=keys))
