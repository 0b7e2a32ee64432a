"""Maintenance scheduler — periodic housekeeping for the coordination layer.

A :class:`TaskManager` runs each registered :class:`CronJob` on its own
asyncio task, once per ``period`` seconds. A job with a ``lock_ttl`` first
takes the store lock ``lock:cron:{name}``. The lock is left to expire
rather than released after the run, so when several coordinators run side
by side only one of them executes the job in a given lock window.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from marketplace_coord.metrics.collector import CoordinationMetrics
    from marketplace_coord.store.client import StoreClient

logger = logging.getLogger(__name__)

# Lock resource per job; the store keys it as ``lock:cron:{name}``
CRON_LOCK_RESOURCE = "cron:{name}"


@dataclass(frozen=True)
class CronJob:
    """A recurring maintenance job."""

    handler: Callable[[], Awaitable[None]]
    period: float  # seconds
    name: str = ""
    lock_ttl: int | None = None  # seconds; None runs on every instance


class TaskManager:
    """Runs maintenance jobs on background asyncio tasks.

    Usage::

        tm = TaskManager(store=store, metrics=metrics)
        tm.register(
            "cleanup_completed_jobs:default",
            CronJob(handler=purge, period=3600, lock_ttl=3599),
        )
        await tm.start()
        ...
        await tm.stop()
    """

    def __init__(
        self,
        *,
        store: StoreClient | None = None,
        metrics: CoordinationMetrics | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._jobs: dict[str, CronJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stop: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._stop is not None

    @property
    def jobs(self) -> dict[str, CronJob]:
        """Registered jobs by name."""
        return dict(self._jobs)

    def register(self, name: str, job: CronJob) -> None:
        """Add *job* under *name*; it starts at once if the manager is running."""
        job = replace(job, name=name)
        self._jobs[name] = job
        if self._stop is not None:
            self._spawn(job, self._stop)

    def _spawn(self, job: CronJob, stop: asyncio.Event) -> None:
        self._tasks[job.name] = asyncio.create_task(
            self._run_loop(job, stop), name=f"cron:{job.name}"
        )

    async def start(self) -> None:
        if self._stop is not None:
            return
        self._stop = asyncio.Event()
        for job in self._jobs.values():
            self._spawn(job, self._stop)
        logger.info("Maintenance scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Stop every job loop; a run in progress is cancelled."""
        if self._stop is None:
            return
        self._stop.set()
        self._stop = None
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error("Maintenance job error during shutdown: %s", result)
        logger.info("Maintenance scheduler stopped")

    async def run_once(self, name: str) -> bool:
        """Run the job registered as *name* now, honouring its lock.

        Returns:
            False if another instance holds the lock and the run was skipped.

        Raises:
            KeyError: If no job is registered under *name*.
        """
        job = self._jobs[name]
        resource = CRON_LOCK_RESOURCE.format(name=name)
        token: str | None = None
        if job.lock_ttl and self._store is not None:
            token = await self._store.acquire_lock(resource, job.lock_ttl)
            if token is None:
                logger.debug("Skipping maintenance job %s; lock held elsewhere", name)
                return False

        logger.debug("Running maintenance job %s", name)
        try:
            if self._metrics:
                with self._metrics.track_cron(name):
                    await job.handler()
            else:
                await job.handler()
        except Exception:
            # A failed run frees the window so another instance can retry
            if token is not None and self._store is not None:
                await self._store.release_lock(resource, token)
            raise
        return True

    async def _run_loop(self, job: CronJob, stop: asyncio.Event) -> None:
        while not stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=job.period)
            if stop.is_set():
                break
            try:
                await self.run_once(job.name)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Maintenance job %s failed", job.name)
