"""Prometheus instruments for the access-control engine.

- ``doauth_stats_total`` gauge-vec (vaults, items, services, grants)
- ``doauth_access_decisions_total`` counter (outcome, reason)
- ``doauth_grants_issued_total`` counter
- ``doauth_decrypt_histogram`` / ``doauth_blob_read_histogram``
- ``doauth_decrypt_retries_total`` counter
- ``doauth_ciphertext_cache_total`` counter (result)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

    from doauth.engine.services.access_decision import Decision

_PREFIX = "doauth"

_STAT_LABELS = ("entity",)


class MetricsCollector:
    """Owns the registry every engine instrument is created in."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        return Counter(name, doc, labels, registry=self._registry)


class EngineMetrics:
    """High-level engine metrics. Histograms track durations in seconds."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._stats = self._collector.gauge(
            f"{_PREFIX}_stats_total",
            "Ledger record counts",
            _STAT_LABELS,
        )
        self._decisions = self._collector.counter(
            f"{_PREFIX}_access_decisions_total",
            "Access decisions by outcome and deny reason",
            ("outcome", "reason"),
        )
        self.grants_issued = self._collector.counter(
            f"{_PREFIX}_grants_issued_total",
            "OAuth grants issued",
        )
        self._retries = self._collector.counter(
            f"{_PREFIX}_decrypt_retries_total",
            "Decrypt attempts retried after a retryable failure",
            ("code",),
        )
        self._cache = self._collector.counter(
            f"{_PREFIX}_ciphertext_cache_total",
            "Ciphertext cache lookups",
            ("result",),
        )
        self._decrypt = self._collector.histogram(
            f"{_PREFIX}_decrypt_histogram",
            "Duration of decrypt oracle calls",
        )
        self._blob_read = self._collector.histogram(
            f"{_PREFIX}_blob_read_histogram",
            "Duration of blob store reads",
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._collector.registry

    # -- Stat setters --

    def set_count(self, entity: str, count: int) -> None:
        """Set the current number of *entity* records (vaults, items, ...)."""
        self._stats.labels(entity=entity).set(count)

    # -- Counters --

    def record_decision(self, decision: Decision) -> None:
        outcome = "allow" if decision.allowed else "deny"
        reason = str(decision.reason) if decision.reason else ""
        self._decisions.labels(outcome=outcome, reason=reason).inc()

    def record_retry(self, code: str) -> None:
        self._retries.labels(code=code).inc()

    def record_cache(self, *, hit: bool) -> None:
        self._cache.labels(result="hit" if hit else "miss").inc()

    # -- Timed sections --

    @contextmanager
    def track_decrypt(self) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self._decrypt.observe(time.monotonic() - start)

    @contextmanager
    def track_blob_read(self) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self._blob_read.observe(time.monotonic() - start)
