"""
experiment_sdk.tier0_core.metrics
──────────────────────────────────
Operational counters and histograms for the store and assignment engine,
with standard service/env labels. These describe the engine's own health
(call volume, outcomes, latency); experiment outcome analytics live
downstream of the assignment log, not here.

Stack: prometheus-client
Configure via: EXPERIMENT_METRICS_PORT (default: 8001)
"""
from __future__ import annotations

from typing import Callable

from prometheus_client import Counter, Histogram, start_http_server

from experiment_sdk.tier0_core.config import get_config

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]


def _default_label_values() -> dict[str, str]:
    config = get_config()
    return {"service": config.app_name, "env": config.environment}


# Collectors are process-global in prometheus_client; keep one per name.
_collectors: dict[str, Counter | Histogram] = {}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create (or retrieve) a counter with standard labels.

    Usage:
        writes_total = counter("experiment_store_writes_total", "Store writes", ["operation"])
        writes_total(operation="create").inc()
    """
    c = _collectors.get(name)
    if c is None:
        c = Counter(name, description, _DEFAULT_LABELS + (labels or []))
        _collectors[name] = c

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_default_label_values(), **extra_labels)

    return _counter


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = (0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
) -> Callable:
    """
    Create (or retrieve) a histogram with standard labels.

    Usage:
        duration = histogram("experiment_assign_duration_seconds", "Assign latency")
        duration().observe(elapsed)
    """
    h = _collectors.get(name)
    if h is None:
        h = Histogram(name, description, _DEFAULT_LABELS + (labels or []), buckets=buckets)
        _collectors[name] = h

    def _histogram(**extra_labels: str) -> Histogram:
        return h.labels(**_default_label_values(), **extra_labels)

    return _histogram


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus HTTP metrics server. Call once at startup."""
    if port is None:
        port = get_config().metrics_port
    start_http_server(port)


__all__ = ["counter", "histogram", "start_metrics_server"]
