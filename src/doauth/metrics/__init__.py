"""Prometheus metrics for the engine and the HTTP API."""

from __future__ import annotations

from doauth.metrics.collector import EngineMetrics, MetricsCollector

__all__ = ["EngineMetrics", "MetricsCollector"]
