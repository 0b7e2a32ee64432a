"""Metrics — Prometheus metrics for job execution and cache lookups."""

from __future__ import annotations

from marketplace_coord.metrics.collector import CoordinationMetrics, MetricsCollector

__all__ = ["CoordinationMetrics", "MetricsCollector"]
