"""
experiment_sdk.tier1_runtime.hooks
────────────────────────────────────
Named hook chains with ``before`` / ``around`` / ``after`` registration,
``if_`` / ``unless`` conditions and explicit abort.

A hook aborts its chain by returning the ``ABORT`` sentinel. Abort unwinds
only the chain it was returned in: the caller receives a ``ChainResult``
describing what happened and decides how to continue. Exceptions raised by
hooks are never caught here.

Execution order for ``chain.run(target, body)``:
  1. before hooks, in registration order (an abort stops here)
  2. around hooks, nested, first registered outermost; each receives
     ``(target, proceed)`` and must call ``proceed()`` to continue inward
  3. the body
  4. after hooks, in registration order; skipped after an abort when the
     chain was built with ``skip_after_if_aborted=True``

Chains are immutable values: ``add()`` returns a new chain, so a chain can be
shared by concurrent runs without locking.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Literal, Sequence

HookKind = Literal["before", "after", "around"]
Condition = Callable[..., Any] | Sequence[Callable[..., Any]] | None


class Outcome(Enum):
    CONTINUE = "continue"
    ABORT = "abort"


ABORT = Outcome.ABORT
CONTINUE = Outcome.CONTINUE


# ── Arity-aware callables ──────────────────────────────────────────────────

def positional_arity(fn: Callable[..., Any]) -> int:
    """Number of positional arguments *fn* accepts (a large number for *args)."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    count = 0
    for p in params:
        if p.kind is inspect.Parameter.VAR_POSITIONAL:
            return 1 << 16
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


def _as_tuple(conditions: Condition) -> tuple["Callback", ...]:
    if conditions is None:
        return ()
    if callable(conditions):
        conditions = [conditions]
    return tuple(Callback.wrap(c) for c in conditions)


@dataclass(frozen=True)
class Callback:
    """
    A user callable plus its guard conditions. Invoked with as many of
    ``(target, *extra)`` as it accepts, so both ``lambda: ...`` and
    ``def step(self): ...`` work.
    """
    fn: Callable[..., Any]
    name: str
    arity: int
    if_: tuple["Callback", ...] = ()
    unless: tuple["Callback", ...] = ()

    @classmethod
    def wrap(
        cls,
        fn: Callable[..., Any],
        *,
        if_: Condition = None,
        unless: Condition = None,
    ) -> "Callback":
        if isinstance(fn, Callback):
            return fn
        if not callable(fn):
            raise TypeError(f"Expected a callable, got {fn!r}")
        return cls(
            fn=fn,
            name=getattr(fn, "__name__", type(fn).__name__),
            arity=positional_arity(fn),
            if_=_as_tuple(if_),
            unless=_as_tuple(unless),
        )

    def __call__(self, target: Any, *extra: Any) -> Any:
        return self.fn(*(target, *extra)[: self.arity])

    def applies_to(self, target: Any) -> bool:
        return all(c(target) for c in self.if_) and not any(c(target) for c in self.unless)


# ── Chain ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Hook:
    kind: HookKind
    callback: Callback


@dataclass(frozen=True)
class ChainResult:
    value: Any = None
    aborted: bool = False
    aborted_by: str | None = None
    body_ran: bool = False


@dataclass(frozen=True)
class HookChain:
    name: str
    hooks: tuple[Hook, ...] = field(default_factory=tuple)
    skip_after_if_aborted: bool = False

    def add(
        self,
        kind: HookKind,
        fn: Callable[..., Any],
        *,
        if_: Condition = None,
        unless: Condition = None,
        prepend: bool = False,
    ) -> "HookChain":
        if kind not in ("before", "after", "around"):
            raise ValueError(f"Unknown hook kind {kind!r}. Use before, after or around.")
        hook = Hook(kind, Callback.wrap(fn, if_=if_, unless=unless))
        hooks = (hook, *self.hooks) if prepend else (*self.hooks, hook)
        return replace(self, hooks=hooks)

    @property
    def empty(self) -> bool:
        return not self.hooks

    def __len__(self) -> int:
        return len(self.hooks)

    def _of_kind(self, kind: HookKind) -> list[Callback]:
        return [h.callback for h in self.hooks if h.kind == kind]

    def run(self, target: Any, body: Callable[[], Any] | None = None) -> ChainResult:
        for callback in self._of_kind("before"):
            if callback.applies_to(target) and callback(target) is ABORT:
                if not self.skip_after_if_aborted:
                    self._run_afters(target)
                return ChainResult(aborted=True, aborted_by=callback.name)

        arounds = self._of_kind("around")
        state: dict[str, Any] = {"value": None, "ran": False, "aborted_by": None}

        def invoke(index: int) -> Any:
            if index == len(arounds):
                state["ran"] = True
                state["value"] = body() if body is not None else None
                return state["value"]

            callback = arounds[index]
            if not callback.applies_to(target):
                return invoke(index + 1)

            entered = False

            def proceed() -> Any:
                nonlocal entered
                if not entered:
                    entered = True
                    invoke(index + 1)
                return state["value"]

            if callback(target, proceed) is ABORT and state["aborted_by"] is None:
                state["aborted_by"] = callback.name
            return state["value"]

        invoke(0)

        aborted_by = state["aborted_by"]
        if aborted_by is None or not self.skip_after_if_aborted:
            self._run_afters(target)
        return ChainResult(
            value=state["value"],
            aborted=aborted_by is not None,
            aborted_by=aborted_by,
            body_ran=state["ran"],
        )

    def _run_afters(self, target: Any) -> None:
        for callback in self._of_kind("after"):
            if callback.applies_to(target):
                callback(target)


__all__ = [
    "ABORT",
    "CONTINUE",
    "Outcome",
    "Callback",
    "Hook",
    "HookChain",
    "ChainResult",
    "positional_arity",
]
