"""
experiment_sdk.tier0_core.metrics
───────────────────────────────────
Counters and histograms for experiment runs. Every family carries the
``service`` and ``env`` labels (APP_NAME / APP_ENV) ahead of its own labels
and registers with the default Prometheus registry, which the host
application exposes on its /metrics endpoint.

Minimal stack: prometheus-client
Configure via: APP_NAME, APP_ENV, EXPERIMENT_METRICS_ENABLED=true|false
"""
from __future__ import annotations

from typing import Callable

from prometheus_client import Counter, Histogram

from experiment_sdk.tier0_core.config import get_config

DEFAULT_LABELS = ["service", "env"]

RUN_DURATION_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)

# name -> family; a family registers once per process.
_families: dict[str, Counter | Histogram] = {}


def default_label_values() -> list[str]:
    config = get_config()
    return [config.app_name, config.environment]


def _labels(family: Counter | Histogram, extra: dict[str, str]):
    return family.labels(**dict(zip(DEFAULT_LABELS, default_label_values())), **extra)


def _family(name: str, build: Callable[[], Counter | Histogram]) -> Counter | Histogram:
    family = _families.get(name)
    if family is None:
        family = _families[name] = build()
    return family


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create (or retrieve) a counter; the returned callable takes the extra labels.

    Usage:
        runs_total = counter("experiment_runs_total", "Experiment runs", ["experiment"])
        runs_total(experiment="checkout/button_color").inc()
    """
    family = _family(name, lambda: Counter(name, description, DEFAULT_LABELS + (labels or [])))
    return lambda **extra: _labels(family, extra)


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = RUN_DURATION_BUCKETS,
) -> Callable:
    """Create (or retrieve) a histogram; the returned callable takes the extra labels."""
    family = _family(
        name,
        lambda: Histogram(name, description, DEFAULT_LABELS + (labels or []), buckets=buckets),
    )
    return lambda **extra: _labels(family, extra)


__all__ = ["DEFAULT_LABELS", "counter", "histogram", "default_label_values"]
