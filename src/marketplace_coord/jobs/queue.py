"""Job queue — priority/delayed scheduling with retry and backoff.

Each named queue keeps five sorted sets in the shared store:

- ``queue:{name}:waiting``   score ``-priority * 2**32 + seq`` (FIFO within a priority)
- ``queue:{name}:delayed``   score = due time (epoch ms)
- ``queue:{name}:active``    score = dispatch time (epoch ms)
- ``queue:{name}:completed`` score = completion time (epoch ms)
- ``queue:{name}:failed``    score = failure time (epoch ms)

Job records live under ``job:{id}``. A job id is a member of exactly one index:
every transition is a single atomic store move, and the waiting → active claim
pops and re-indexes in one step, so several processes may consume the same
queue without dispatching a job twice.

Processing is one background asyncio task per queue that dispatches at most
one job per tick. In-flight handlers are never cancelled and have no timeout;
jobs left in ``active`` by a crashed consumer are recovered once their lease
(``QueueConfig.active_lease_ms``) runs out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from marketplace_coord.errors import (
    HandlerNotFoundError,
    InvalidPayloadError,
    JobHandlerError,
)
from marketplace_coord.jobs.models import PAYLOAD_SCHEMAS, Job, JobState, JobType, QueueStats
from marketplace_coord.metrics.collector import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_RECOVERED,
    OUTCOME_RETRIED,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from marketplace_coord.config.settings import QueueConfig
    from marketplace_coord.jobs.models import JobHandler
    from marketplace_coord.metrics.collector import CoordinationMetrics
    from marketplace_coord.store.client import StoreClient

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "queue:"
JOB_PREFIX = "job:"

# Waiting score = -priority * stride + sequence; |priority| must stay below
# 2**20 so the combined score is exact in a double.
_PRIORITY_STRIDE = 2**32
MAX_PRIORITY = 2**20 - 1


class JobQueue:
    """A named priority/delayed job queue on the shared store.

    Usage::

        queue = JobQueue(store, config.queue, "notifications")
        queue.register_handler(JobType.VENDOR_CART_ADD, handle_cart_add)
        job_id = await queue.add_job(JobType.VENDOR_CART_ADD, payload, priority=5)
        await queue.start_processing(interval_ms=500)
        ...
        await queue.stop_processing()
    """

    def __init__(
        self,
        store: StoreClient,
        config: QueueConfig,
        name: str = "default",
        *,
        metrics: CoordinationMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._name = name
        self._metrics = metrics
        self._clock = clock
        self._handlers: dict[JobType, JobHandler] = {}
        self._task: asyncio.Task[None] | None = None
        self._stop: asyncio.Event | None = None
        self._current_job_id: str | None = None
        # Loops still finishing a handler after stop_processing gave up waiting
        self._draining: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_processing(self) -> bool:
        """Whether the background processing loop is running."""
        return self._task is not None

    # ------------------------------------------------------------------
    # Keys and clock
    # ------------------------------------------------------------------

    def index_key(self, state: JobState | str) -> str:
        """Store key of one of this queue's job indices."""
        return f"{QUEUE_PREFIX}{self._name}:{JobState(state)}"

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"{JOB_PREFIX}{job_id}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    async def _waiting_score(self, priority: int) -> float:
        seq = await self._store.incr(f"{QUEUE_PREFIX}{self._name}:seq")
        return float(-priority * _PRIORITY_STRIDE + seq % _PRIORITY_STRIDE)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def add_job(
        self,
        job_type: JobType | str,
        payload: BaseModel | dict[str, Any],
        *,
        priority: int = 0,
        max_attempts: int | None = None,
        delay: int = 0,
    ) -> str:
        """Persist a job and index it as waiting, or delayed if *delay* > 0.

        Args:
            job_type: One of :class:`JobType`.
            payload: Payload model or dict matching the job type's schema.
            priority: Higher runs sooner; equal priorities run in FIFO order.
            max_attempts: Executions before the job is marked failed (default 3).
            delay: Milliseconds to wait before the job becomes eligible.

        Returns:
            The generated job id. The outcome is observable only through
            :meth:`get_job` / :meth:`get_stats`.

        Raises:
            InvalidPayloadError: Unknown job type or payload not matching its schema.
            ValueError: Priority, attempts or delay out of range.
        """
        try:
            job_type = JobType(job_type)
        except ValueError as e:
            raise InvalidPayloadError(str(job_type), "unknown job type") from e
        if abs(priority) > MAX_PRIORITY:
            msg = f"priority must be within ±{MAX_PRIORITY}"
            raise ValueError(msg)
        if delay < 0:
            msg = "delay must not be negative"
            raise ValueError(msg)
        if max_attempts is not None and max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)

        raw = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
        try:
            data = PAYLOAD_SCHEMAS[job_type].model_validate(raw).model_dump(mode="json")
        except ValidationError as e:
            raise InvalidPayloadError(job_type, str(e)) from e

        now_ms = self._now_ms()
        scheduled_ms = now_ms + delay
        job = Job(
            id=str(uuid.uuid4()),
            type=job_type,
            data=data,
            priority=priority,
            max_attempts=(
                self._config.default_max_attempts if max_attempts is None else max_attempts
            ),
            delay=delay,
            created_at=datetime.fromtimestamp(now_ms / 1000, tz=UTC),
            scheduled_for=datetime.fromtimestamp(scheduled_ms / 1000, tz=UTC),
        )
        await self._save(job)

        if delay > 0:
            await self._store.zadd(self.index_key(JobState.DELAYED), {job.id: scheduled_ms})
        else:
            score = await self._waiting_score(job.priority)
            await self._store.zadd(self.index_key(JobState.WAITING), {job.id: score})

        logger.debug("Queued job %s (%s) on %s", job.id, job_type, self._name)
        return job.id

    def register_handler(self, job_type: JobType | str, handler: JobHandler) -> None:
        """Associate *job_type* with an async ``handler(job)``."""
        self._handlers[JobType(job_type)] = handler

    def missing_handlers(self, job_types: Iterable[JobType]) -> list[JobType]:
        """Return the job types in *job_types* that have no handler here."""
        return [t for t in job_types if t not in self._handlers]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Job | None:
        """Return the job record, or None if missing or unreadable."""
        raw = await self._store.get(self._job_key(job_id))
        if raw is None:
            return None
        try:
            return Job.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed job record %s", job_id)
            return None

    async def _save(self, job: Job) -> None:
        await self._store.set(self._job_key(job.id), job.model_dump_json(), self._config.job_ttl)

    async def get_job_ids(self, state: JobState | str, start: int = 0, stop: int = -1) -> list[str]:
        """Job ids in one index, in index order."""
        return await self._store.zrange(self.index_key(state), start, stop)

    # ------------------------------------------------------------------
    # Processing loop
    # ------------------------------------------------------------------

    async def start_processing(self, interval_ms: int | None = None) -> None:
        """Start the background tick loop (no-op if already running)."""
        if self._task is not None:
            return
        period = (interval_ms or self._config.default_interval_ms) / 1000
        self._stop = asyncio.Event()
        try:
            await self.promote_delayed_jobs()
        except Exception:
            logger.exception("Initial delayed-job promotion failed on queue %s", self._name)
        self._task = asyncio.create_task(self._run_loop(period, self._stop))
        logger.info("Started job queue processing for queue: %s", self._name)

    async def stop_processing(self) -> None:
        """Stop scheduling ticks.

        A handler already running is never cancelled. Waiting for it is
        bounded by ``QueueConfig.stop_timeout_ms``; past that the loop is left
        to finish on its own and no further job is dispatched.
        """
        if self._task is None or self._stop is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        timeout = self._config.stop_timeout_ms / 1000
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Queue %s: job %s still running after %dms; not waiting for it",
                self._name,
                self._current_job_id,
                self._config.stop_timeout_ms,
            )
            self._draining.add(task)
            task.add_done_callback(self._draining.discard)
            return
        logger.info("Stopped job queue processing for queue: %s", self._name)

    async def _run_loop(self, period: float, stop: asyncio.Event) -> None:
        while not stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=period)
            if stop.is_set():
                break
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Job processing error on queue %s", self._name)

    async def tick(self) -> Job | None:
        """Run one scheduling step.

        Recovers stalled jobs, promotes due delayed jobs, then claims and
        executes the highest-priority waiting job.

        Returns:
            The job that was executed, or None if nothing was ready.
        """
        await self.recover_stalled_jobs()
        await self.promote_delayed_jobs()
        return await self.process_next_job()

    async def promote_delayed_jobs(self) -> int:
        """Move every due delayed job into waiting; returns how many moved."""
        delayed_key = self.index_key(JobState.DELAYED)
        waiting_key = self.index_key(JobState.WAITING)
        moved = 0
        for job_id in await self._store.zrangebyscore(delayed_key, float("-inf"), self._now_ms()):
            job = await self.get_job(job_id)
            if job is None:
                await self._store.zrem(delayed_key, job_id)
                continue
            score = await self._waiting_score(job.priority)
            if await self._store.zmove(delayed_key, waiting_key, job_id, score):
                moved += 1
        return moved

    async def process_next_job(self) -> Job | None:
        """Claim the highest-priority waiting job and execute it."""
        active_key = self.index_key(JobState.ACTIVE)
        job_id = await self._store.zpopmin_move(
            self.index_key(JobState.WAITING), active_key, self._now_ms()
        )
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            logger.warning("Job %s vanished before execution; dropping it", job_id)
            await self._store.zrem(active_key, job_id)
            return None

        await self._execute(job)
        return job

    # ------------------------------------------------------------------
    # Execution and state transitions
    # ------------------------------------------------------------------

    async def _run_handler(self, job: Job) -> None:
        handler = self._handlers.get(job.type)
        if handler is None:
            raise HandlerNotFoundError(job.type, self._name)
        if self._metrics:
            with self._metrics.track_job(self._name, job.type):
                await handler(job)
        else:
            await handler(job)

    async def _execute(self, job: Job) -> None:
        self._current_job_id = job.id
        try:
            job.attempts += 1
            job.processed_at = self._now()
            await self._save(job)

            try:
                await self._run_handler(job)
            except asyncio.CancelledError:
                raise
            except HandlerNotFoundError as e:
                logger.error("%s", e)  # noqa: TRY400
                await self._handle_failure(job, e.message)
                return
            except Exception as e:
                error = JobHandlerError(job.id, job.type, str(e) or type(e).__name__)
                error.__cause__ = e
                logger.error("Job %s (%s) failed", job.id, job.type, exc_info=error)
                await self._handle_failure(job, error.message)
                return

            job.completed_at = self._now()
            if not await self._transition(job, JobState.COMPLETED, self._now_ms()):
                return
            if self._metrics:
                self._metrics.record_job(self._name, job.type, OUTCOME_COMPLETED)
            logger.info("Job %s (%s) completed successfully", job.id, job.type)
        finally:
            self._current_job_id = None

    async def _transition(self, job: Job, state: JobState, score: float) -> bool:
        """Move *job* out of active into *state* and persist the record.

        If the job is no longer active (removed, or recovered elsewhere after
        its lease ran out) nothing is written.
        """
        moved = await self._store.zmove(
            self.index_key(JobState.ACTIVE), self.index_key(state), job.id, score
        )
        if not moved:
            logger.warning("Job %s left active before it finished; result dropped", job.id)
            return False
        await self._save(job)
        return True

    async def _handle_failure(self, job: Job, error: str) -> None:
        """Retry with exponential backoff, or fail after ``max_attempts``."""
        if job.attempts >= job.max_attempts:
            job.failed_at = self._now()
            job.error = error
            if await self._transition(job, JobState.FAILED, self._now_ms()):
                if self._metrics:
                    self._metrics.record_job(self._name, job.type, OUTCOME_FAILED)
                logger.warning("Job %s moved to failed queue: %s", job.id, error)
            return

        retry_delay = self._config.backoff_base_ms * 2**job.attempts
        due_ms = self._now_ms() + retry_delay
        job.scheduled_for = datetime.fromtimestamp(due_ms / 1000, tz=UTC)
        job.error = error
        if await self._transition(job, JobState.DELAYED, due_ms):
            if self._metrics:
                self._metrics.record_job(self._name, job.type, OUTCOME_RETRIED)
            logger.info(
                "Job %s scheduled for retry in %dms (attempt %d/%d)",
                job.id,
                retry_delay,
                job.attempts,
                job.max_attempts,
            )

    async def recover_stalled_jobs(self) -> int:
        """Treat active jobs older than the lease as failed attempts.

        The job this instance is executing right now is never touched.

        Returns:
            Number of jobs moved out of active.
        """
        lease = self._config.active_lease_ms
        if lease <= 0:
            return 0
        active_key = self.index_key(JobState.ACTIVE)
        stalled = await self._store.zrangebyscore(active_key, float("-inf"), self._now_ms() - lease)
        recovered = 0
        for job_id in stalled:
            if job_id == self._current_job_id:
                continue
            job = await self.get_job(job_id)
            if job is None:
                await self._store.zrem(active_key, job_id)
                continue
            logger.warning("Recovering stalled job %s (%s) on %s", job.id, job.type, self._name)
            await self._handle_failure(job, f"stalled: no result within {lease}ms")
            if self._metrics:
                self._metrics.record_job(self._name, job.type, OUTCOME_RECOVERED)
            recovered += 1
        return recovered

    # ------------------------------------------------------------------
    # Inspection and housekeeping
    # ------------------------------------------------------------------

    async def get_stats(self) -> QueueStats:
        """Return the size of each job index."""
        counts = await asyncio.gather(
            *(self._store.zcard(self.index_key(state)) for state in JobState)
        )
        return QueueStats(**dict(zip((s.value for s in JobState), counts, strict=True)))

    async def remove_job(self, job_id: str) -> bool:
        """Remove a job from every index and delete its record."""
        removed = False
        for state in JobState:
            if await self._store.zrem(self.index_key(state), job_id) > 0:
                removed = True
        deleted = await self._store.delete(self._job_key(job_id))
        return removed or deleted > 0

    async def cleanup_completed_jobs(self, older_than_ms: int | None = None) -> int:
        """Purge completed jobs finished more than *older_than_ms* ago.

        Returns:
            Number of jobs purged.
        """
        if older_than_ms is None:
            older_than_ms = self._config.completed_retention_ms
        completed_key = self.index_key(JobState.COMPLETED)
        cutoff = self._now_ms() - older_than_ms
        old_ids = await self._store.zrangebyscore(completed_key, float("-inf"), cutoff)
        if not old_ids:
            return 0
        await self._store.zrem(completed_key, *old_ids)
        await self._store.delete(*(self._job_key(job_id) for job_id in old_ids))
        logger.info("Cleaned up %d completed jobs on %s", len(old_ids), self._name)
        return len(old_ids)
