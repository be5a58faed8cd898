"""
experiment_sdk.tier3_platform.segments
────────────────────────────────────────
Segment rules force a variant before the rollout is consulted. Rules run in
declaration order as a hook chain; the first rule whose ``if_`` / ``unless``
guards pass and whose predicate returns exactly ``True`` assigns its variant
and aborts the chain, so later rules never evaluate.

A rule with guards but no predicate always matches once its guards pass:

    register_segment(chain, variants, into="green", if_=lambda e: e.context["beta"])
"""
from __future__ import annotations

from typing import Any, Callable

from experiment_sdk.tier0_core.errors import ConfigurationError
from experiment_sdk.tier1_runtime.hooks import ABORT, Callback, Condition, HookChain
from experiment_sdk.tier3_platform.variants import Variants


def _always() -> bool:
    return True


class SegmentRule:
    """A predicate bound to the variant it assigns."""

    def __init__(self, predicate: Callable[..., Any], into: str) -> None:
        self.predicate = Callback.wrap(predicate)
        self.into = into
        self.__name__ = self.predicate.name

    def __call__(self, experiment: Any) -> Any:
        if self.predicate(experiment) is True:
            experiment.set(variant=self.into)
            return ABORT
        return None

    def __repr__(self) -> str:
        return f"<SegmentRule {self.__name__} into={self.into!r}>"


def new_segment_chain() -> HookChain:
    return HookChain("segment")


def register_segment(
    chain: HookChain,
    variants: Variants,
    predicate: Callable[..., Any] | None = None,
    *,
    into: str,
    if_: Condition = None,
    unless: Condition = None,
) -> HookChain:
    """Return a new segment chain with one more rule appended."""
    into = str(into)
    if into not in variants:
        raise ConfigurationError(f"Unknown {into} variant", variant=into)
    if predicate is None:
        if if_ is None and unless is None:
            raise ConfigurationError(
                "Provide a predicate or an `if_` / `unless` condition for the segment rule",
                variant=into,
            )
        predicate = _always
    return chain.add("before", SegmentRule(predicate, into), if_=if_, unless=unless)


__all__ = ["SegmentRule", "new_segment_chain", "register_segment"]
