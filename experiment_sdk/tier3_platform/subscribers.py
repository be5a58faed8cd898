"""
experiment_sdk.tier3_platform.subscribers
───────────────────────────────────────────
Lifecycle event subscribers: structured logs for every run, and Prometheus
run counters/durations.

Both attach once per process; ``experiment_sdk`` attaches them on import
(metrics only when EXPERIMENT_METRICS_ENABLED is true).

Log events:
  experiment.start / experiment.nested
  experiment.segmented / experiment.resolved / experiment.phase_completed
  experiment.completed / experiment.aborted / experiment.failed / experiment.errored
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from experiment_sdk.tier0_core.config import get_config
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier0_core.metrics import counter, histogram
from experiment_sdk.tier0_core.redact import redact
from experiment_sdk.tier0_core.run_key import identify
from experiment_sdk.tier1_runtime.context import running_experiments
from experiment_sdk.tier1_runtime.instrumentation import (
    EventName,
    RunEvent,
    subscribe,
    unsubscribe,
)

logger = get_logger("experiment_sdk.runs")


def identifier(experiment: Any) -> str:
    return f"{type(experiment).__qualname__}[{experiment.run_key[:8]}]"


def format_context(value: Any) -> Any:
    """Render identifiable values as their global id, recursively."""
    if isinstance(value, Mapping):
        return {k: format_context(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [format_context(v) for v in value]
    return identify(value)


def _phase(event: RunEvent) -> str:
    return event.name.value.split(".", 1)[1]


# ── Log subscriber ────────────────────────────────────────────────────────────

def log_event(event: RunEvent) -> None:
    experiment = event.experiment
    if experiment is None:
        return
    log = logger.bind(
        experiment=experiment.name,
        run_id=experiment.run_id,
        identifier=identifier(experiment),
    )

    if event.name is EventName.START:
        running = running_experiments()
        if len(running) > 1:
            log.warning("experiment.nested", outer=identifier(running[-2]))
        fields: dict[str, Any] = {}
        if event.variant:
            fields["variant"] = event.variant
        if experiment.log_context:
            fields["context"] = redact(format_context(experiment.context))
        log.info("experiment.start", **fields)
        return

    if event.name is EventName.COMPLETED:
        if event.exception is not None:
            log.error(
                "experiment.failed",
                error_type=type(event.exception).__name__,
                error=str(event.exception),
                duration_ms=event.duration_ms,
            )
        elif event.aborted:
            log.info("experiment.aborted", aborted_by=event.aborted_by, duration_ms=event.duration_ms)
        elif event.error:
            log.error("experiment.errored", error=event.error, duration_ms=event.duration_ms)
        else:
            log.info("experiment.completed", variant=event.variant, duration_ms=event.duration_ms)
        return

    if event.exception is not None:
        return
    phase = _phase(event)
    if event.name is EventName.SEGMENT_CALLBACKS and event.aborted:
        log.info("experiment.segmented", variant=experiment.variant, rule=event.aborted_by,
                 duration_ms=event.duration_ms)
    elif event.variant and event.name is not EventName.RUN_CALLBACKS:
        log.info("experiment.resolved", variant=event.variant, phase=phase, duration_ms=event.duration_ms)
    elif event.name is not EventName.VARIANT_STEPS:
        log.debug("experiment.phase_completed", phase=phase, duration_ms=event.duration_ms)


# ── Metrics subscriber ────────────────────────────────────────────────────────

def outcome_of(event: RunEvent) -> str:
    if event.exception is not None:
        return "failed"
    if event.aborted:
        return "aborted"
    if event.error:
        return "errored"
    if event.experiment.skipped:
        return "skipped"
    return "completed"


def record_metrics(event: RunEvent) -> None:
    if event.experiment is None:
        return
    experiment = event.experiment.name
    runs_total = counter(
        "experiment_runs_total", "Experiment runs by outcome", ["experiment", "variant", "outcome"]
    )
    duration = histogram(
        "experiment_run_duration_seconds", "Experiment run duration", ["experiment"]
    )
    runs_total(
        experiment=experiment, variant=event.variant or "", outcome=outcome_of(event)
    ).inc()
    if event.duration_ms is not None:
        duration(experiment=experiment).observe(event.duration_ms / 1000)


# ── Attachment ────────────────────────────────────────────────────────────────

def attach_log_subscriber() -> None:
    subscribe("*", log_event)


def attach_metrics_subscriber(*, force: bool = False) -> bool:
    """Attach run metrics when enabled in config (or *force*). Returns whether attached."""
    if not (force or get_config().metrics_enabled):
        return False
    subscribe(EventName.COMPLETED, record_metrics)
    return True


def detach_subscribers() -> None:
    unsubscribe(log_event)
    unsubscribe(record_metrics)


__all__ = [
    "identifier",
    "format_context",
    "log_event",
    "outcome_of",
    "record_metrics",
    "attach_log_subscriber",
    "attach_metrics_subscriber",
    "detach_subscribers",
]
