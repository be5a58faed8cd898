"""
experiment_sdk.testing
────────────────────────
Helpers for testing code that runs experiments.

``stub_experiment`` swaps an experiment's rollout for a ``MockRollout`` for
the duration of a ``with`` block and restores the previous rollout after.
It replaces class-level state, so use it from one thread at a time.

Usage:
    with stub_experiment(ButtonColor, "red"):
        assert render_checkout() == "red button"

    with stub_experiment(ButtonColor, "red", "blue"):   # alternates per run
        ...

    with stub_experiment(ButtonColor, skip=True):        # default variant
        ...

    with stub_experiment(ButtonColor, variant=lambda e: e.context["plan"]):
        ...
"""
from __future__ import annotations

import itertools
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator

from experiment_sdk.tier0_core.errors import ValidationError


class MockRollout:
    """
    Rollout assigning stubbed variants. Cycles through *variants* on
    successive runs, or calls *variant* (a callable taking the experiment).
    Assignments are returned directly, so caching stores them as usual.
    """

    def __init__(
        self,
        *variants: str,
        skip: bool = False,
        variant: str | Callable[[Any], str | None] | None = None,
    ) -> None:
        self.skip = skip
        self.calls: list[Any] = []
        if callable(variant):
            self._choose: Callable[[Any], str | None] = variant
        else:
            names = [*variants, *([variant] if variant else [])]
            cycle = itertools.cycle(names) if names else None
            self._choose = lambda experiment: next(cycle) if cycle else None

    def enabled_for(self, experiment: Any) -> bool:
        return not self.skip

    def variant_for(self, experiment: Any) -> str | None:
        self.calls.append(experiment)
        return self._choose(experiment)

    def __repr__(self) -> str:
        return f"<MockRollout skip={self.skip!r} calls={len(self.calls)}>"


@contextmanager
def stub_experiment(
    experiment_class: type,
    *variants: str,
    skip: bool = False,
    variant: str | Callable[[Any], str | None] | None = None,
) -> Iterator[MockRollout]:
    """Stub *experiment_class*'s rollout within the block; yields the mock."""
    for name in [*variants, *([variant] if isinstance(variant, str) else [])]:
        if name not in experiment_class.definition.variants:
            raise ValidationError(f"Unknown {name!r} variant", fields={"variant": name})

    original = experiment_class.definition.rollout
    mock = MockRollout(*variants, skip=skip, variant=variant)
    experiment_class.definition = replace(experiment_class.definition, rollout=mock)
    try:
        yield mock
    finally:
        experiment_class.definition = replace(experiment_class.definition, rollout=original)


__all__ = ["MockRollout", "stub_experiment"]
