"""
Async metrics collection for the ingest/sign pipeline.

Implements a minimal Prometheus-compatible counter/histogram set for the
changelog ingestor. In-memory counters are always tracked so tests can
assert on them; exporters are only created when metrics are enabled.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram


@dataclass
class IngestMetrics:
    """Captured runtime metrics for quick assertions in tests."""

    entries_signed: int = 0
    duplicates_dropped: int = 0
    ingest_errors: int = 0
    projection_errors: int = 0


class MetricsCollector:
    """Container-scoped async metrics collector.

    With metrics disabled every method is a cheap no-op apart from the
    in-memory counters.
    """

    def __init__(self, *, enabled: bool = False) -> None:
        self._enabled = bool(enabled)
        self._lock = asyncio.Lock()
        self._state = IngestMetrics()

        self._c_signed: Any | None = None
        self._c_duplicates: Any | None = None
        self._c_errors: Any | None = None
        self._h_sign_latency: Any | None = None
        self._registry: CollectorRegistry | None = None

        if self._enabled:
            # Isolated registry avoids duplicate registration across instances
            self._registry = CollectorRegistry()
            self._c_signed = Counter(
                "chainlog_entries_signed_total",
                "Changelog entries signed and appended to the log",
                registry=self._registry,
            )
            self._c_duplicates = Counter(
                "chainlog_duplicates_dropped_total",
                "Entries at or below the committed serial that were dropped",
                registry=self._registry,
            )
            self._c_errors = Counter(
                "chainlog_ingest_errors_total",
                "Ingest pass failures by error type",
                ["error"],
                registry=self._registry,
            )
            self._h_sign_latency = Histogram(
                "chainlog_sign_seconds",
                "Latency of one atomic sign-append-commit step",
                buckets=(0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
                registry=self._registry,
            )

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry | None:
        return self._registry

    async def record_signed(self, *, duration_seconds: float | None = None) -> None:
        async with self._lock:
            self._state.entries_signed += 1
        if self._c_signed is not None:
            self._c_signed.inc()
        if duration_seconds is not None and self._h_sign_latency is not None:
            self._h_sign_latency.observe(duration_seconds)

    async def record_duplicate(self) -> None:
        async with self._lock:
            self._state.duplicates_dropped += 1
        if self._c_duplicates is not None:
            self._c_duplicates.inc()

    async def record_error(self, error_type: str) -> None:
        async with self._lock:
            self._state.ingest_errors += 1
        if self._c_errors is not None:
            self._c_errors.labels(error=error_type).inc()

    async def record_projection_error(self) -> None:
        async with self._lock:
            self._state.projection_errors += 1
        if self._c_errors is not None:
            self._c_errors.labels(error="ProjectionError").inc()

    async def snapshot(self) -> IngestMetrics:
        async with self._lock:
            return IngestMetrics(
                entries_signed=self._state.entries_signed,
                duplicates_dropped=self._state.duplicates_dropped,
                ingest_errors=self._state.ingest_errors,
                projection_errors=self._state.projection_errors,
            )
