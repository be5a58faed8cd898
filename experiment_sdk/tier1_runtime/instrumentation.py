"""
experiment_sdk.tier1_runtime.instrumentation
──────────────────────────────────────────────
In-process lifecycle event bus. Every experiment run publishes six events,
always in this order:

  experiment.start
  experiment.segment_callbacks
  experiment.variant_steps
  experiment.variant_callbacks
  experiment.run_callbacks
  experiment.completed

Phases that do not execute (a skipped run never consults segment rules, an
aborted run never reaches its variant) publish nothing, so subscribers can
rely on the relative order but not on every event being present.

Usage:
    @subscribe(EventName.COMPLETED)
    def on_completed(event: RunEvent) -> None:
        ...

    with instrument(EventName.VARIANT_STEPS, experiment) as payload:
        payload["aborted"] = True
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

from experiment_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

ALL = "*"


class EventName(str, Enum):
    START = "experiment.start"
    SEGMENT_CALLBACKS = "experiment.segment_callbacks"
    VARIANT_STEPS = "experiment.variant_steps"
    VARIANT_CALLBACKS = "experiment.variant_callbacks"
    RUN_CALLBACKS = "experiment.run_callbacks"
    COMPLETED = "experiment.completed"


@dataclass(frozen=True)
class RunEvent:
    name: EventName
    experiment: Any
    aborted: bool = False
    aborted_by: str | None = None
    exception: BaseException | None = None
    variant: str | None = None
    error: str | None = None
    duration_ms: float | None = None


Subscriber = Callable[[RunEvent], Any]

_lock = threading.Lock()
_subscribers: dict[str, tuple[Subscriber, ...]] = {}


# ── Subscription ──────────────────────────────────────────────────────────────

def subscribe(name: EventName | str = ALL, fn: Subscriber | None = None) -> Any:
    """
    Register *fn* for events named *name* (``"*"`` for every event).
    Without *fn*, returns a decorator.
    """
    key = name.value if isinstance(name, EventName) else name

    def _register(callback: Subscriber) -> Subscriber:
        with _lock:
            current = _subscribers.get(key, ())
            if callback not in current:
                _subscribers[key] = (*current, callback)
        return callback

    if fn is None:
        return _register
    return _register(fn)


def unsubscribe(fn: Subscriber, name: EventName | str | None = None) -> None:
    """Remove *fn* from *name*, or from every event when *name* is None."""
    with _lock:
        keys = [name.value if isinstance(name, EventName) else name] if name else list(_subscribers)
        for key in keys:
            remaining = tuple(s for s in _subscribers.get(key, ()) if s != fn)
            if remaining:
                _subscribers[key] = remaining
            else:
                _subscribers.pop(key, None)


def subscribers(name: EventName | str | None = None) -> tuple[Subscriber, ...]:
    if name is None:
        return tuple(s for group in _subscribers.values() for s in group)
    key = name.value if isinstance(name, EventName) else name
    return _subscribers.get(key, ()) + _subscribers.get(ALL, ())


# ── Publishing ────────────────────────────────────────────────────────────────

def emit(event: RunEvent) -> None:
    """Deliver *event* to its subscribers. A failing subscriber is logged and skipped."""
    for callback in subscribers(event.name):
        try:
            callback(event)
        except Exception as exc:
            logger.warning(
                "instrumentation.subscriber_failed",
                event_name=event.name.value,
                subscriber=getattr(callback, "__qualname__", repr(callback)),
                error=str(exc),
                error_type=type(exc).__name__,
            )


@contextmanager
def instrument(name: EventName, experiment: Any, **payload: Any) -> Iterator[dict[str, Any]]:
    """
    Time the block and publish a ``RunEvent`` when it exits, including when it
    raises. The yielded dict is the event payload; the block may fill in
    ``aborted``, ``aborted_by``, ``variant`` and ``error``.
    """
    start = time.perf_counter()
    try:
        yield payload
    except BaseException as exc:
        payload["exception"] = exc
        raise
    finally:
        payload["duration_ms"] = round((time.perf_counter() - start) * 1000, 3)
        emit(RunEvent(name=name, experiment=experiment, **payload))


__all__ = [
    "ALL",
    "EventName",
    "RunEvent",
    "subscribe",
    "unsubscribe",
    "subscribers",
    "emit",
    "instrument",
]
