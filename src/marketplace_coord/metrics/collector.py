"""Metrics collector — Prometheus counters and histograms.

- ``mpcoord_job_duration_seconds``  histogram-vec (queue, type)
- ``mpcoord_jobs_total``            counter-vec (queue, type, outcome)
- ``mpcoord_cache_lookups_total``   counter-vec (result)
- ``mpcoord_cron_histogram``        histogram-vec (job_name)
- ``mpcoord_cron_last_execution_gauge`` gauge-vec (job_name)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator


_PREFIX = "mpcoord"

# Job outcomes recorded by the queue
OUTCOME_COMPLETED = "completed"
OUTCOME_RETRIED = "retried"
OUTCOME_FAILED = "failed"
OUTCOME_RECOVERED = "recovered"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`CoordinationMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class CoordinationMetrics:
    """High-level metrics for queues, cache and maintenance jobs.

    Each instance owns its own registry so several coordinators can live in
    one process (tests) without duplicate-metric errors.
    """

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._job_duration = self._collector.histogram(
            f"{_PREFIX}_job_duration_seconds",
            "Duration of job handler executions",
            ("queue", "type"),
        )
        self._jobs = self._collector.counter(
            f"{_PREFIX}_jobs",
            "Job executions by outcome",
            ("queue", "type", "outcome"),
        )
        self._cache_lookups = self._collector.counter(
            f"{_PREFIX}_cache_lookups",
            "Cache lookups by result",
            ("result",),
        )

        # Cron metrics
        self._cron_histogram = self._collector.histogram(
            f"{_PREFIX}_cron_histogram",
            "Duration of maintenance job executions",
            ("job_name",),
        )
        self._cron_last = self._collector.gauge(
            f"{_PREFIX}_cron_last_execution_gauge",
            "Timestamp of last maintenance job execution",
            ("job_name",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Counters --

    def record_job(self, queue: str, job_type: str, outcome: str) -> None:
        """Count one job outcome (completed, retried, failed, recovered)."""
        self._jobs.labels(queue=queue, type=job_type, outcome=outcome).inc()

    def record_cache_lookup(self, *, hit: bool) -> None:
        self._cache_lookups.labels(result="hit" if hit else "miss").inc()

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_job(self, queue: str, job_type: str) -> Iterator[None]:
        """Track the duration of a job handler execution."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._job_duration.labels(queue=queue, type=job_type).observe(
                time.monotonic() - start
            )

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Track the duration of a maintenance job and record last execution time."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_histogram.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
