"""
experiment_sdk.tier1_runtime.context
──────────────────────────────────────
Execution context: the experiments executed (and currently running) within
one logical unit of work, such as a web request or a background job.

Uses Python contextvars, so every thread and asyncio task sees its own scope.
The stored context is immutable and every change sets a new value, so a task
started from a parent scope records its runs without leaking them into the
parent or its sibling tasks. Wrap each unit of work in ``unit_of_work()`` to
start from an empty list and restore the surrounding scope afterwards.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from typing import Any, Iterator

from experiment_sdk.tier0_core.ids import new_uuid4
from experiment_sdk.tier0_core.logging import tagged


# ── Domain model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExecutionContext:
    """Per-unit-of-work experiment bookkeeping (a snapshot)."""
    unit_id: str = field(default_factory=new_uuid4)
    executed: tuple[Any, ...] = ()
    running: tuple[Any, ...] = ()


# ── ContextVar storage ────────────────────────────────────────────────────────

_ctx: ContextVar[ExecutionContext] = ContextVar("experiment_execution_context")


# ── Public API ────────────────────────────────────────────────────────────────

def get_execution_context() -> ExecutionContext:
    """Return the current execution context, creating one on first use."""
    try:
        return _ctx.get()
    except LookupError:
        ctx = ExecutionContext()
        _ctx.set(ctx)
        return ctx


def executed_experiments() -> list[Any]:
    """Experiments that completed a run in the current unit of work, oldest first."""
    return list(get_execution_context().executed)


def record_executed(experiment: Any) -> None:
    ctx = get_execution_context()
    _ctx.set(replace(ctx, executed=ctx.executed + (experiment,)))


def reset_executed() -> None:
    """Start a fresh scope for the current context."""
    _ctx.set(ExecutionContext())


def running_experiments() -> list[Any]:
    """Experiments whose run is in progress, outermost first."""
    return list(get_execution_context().running)


@contextmanager
def track_running(experiment: Any) -> Iterator[None]:
    ctx = get_execution_context()
    _ctx.set(replace(ctx, running=ctx.running + (experiment,)))
    try:
        yield
    finally:
        ctx = get_execution_context()
        running = list(ctx.running)
        if experiment in running:
            running.remove(experiment)
        _ctx.set(replace(ctx, running=tuple(running)))


@contextmanager
def unit_of_work(unit_id: str | None = None) -> Iterator[ExecutionContext]:
    """
    Run the block in a fresh execution context. Log lines emitted inside carry
    the unit id. The yielded context is the starting snapshot; read
    ``executed_experiments()`` for the runs recorded so far.

    Usage:
        with unit_of_work() as ctx:
            ButtonColor.run_for(user)
            executed_experiments()  # [<ButtonColor ...>]
    """
    ctx = ExecutionContext(unit_id=unit_id) if unit_id else ExecutionContext()
    token = _ctx.set(ctx)
    try:
        with tagged(unit_id=ctx.unit_id):
            yield ctx
    finally:
        _ctx.reset(token)


def executed_to_json() -> dict[str, dict[str, Any]]:
    """Serialized runs keyed by experiment name; a later run of the same experiment wins."""
    return {record["experiment"]: record for record in executed_to_json_array()}


def executed_to_json_array() -> list[dict[str, Any]]:
    return [experiment.serialize() for experiment in get_execution_context().executed]


__all__ = [
    "ExecutionContext",
    "get_execution_context",
    "executed_experiments",
    "record_executed",
    "reset_executed",
    "running_experiments",
    "track_running",
    "unit_of_work",
    "executed_to_json",
    "executed_to_json_array",
]
