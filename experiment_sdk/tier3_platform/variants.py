"""
experiment_sdk.tier3_platform.variants
────────────────────────────────────────
Variant registry. A variant is a named, ordered chain of steps plus its own
before/around/after variant callbacks.

Steps are 0- or 1-argument callables (the experiment is passed when accepted).
Each step's return value becomes the result unless it returns ``None``; a step
returning ``ABORT`` stops the chain and keeps the result so far.

Registration rules:
  - a new name must not exist yet
  - ``override=True`` replaces the step chain of an existing variant
  - ``add=True`` appends (or with ``prepend=True`` prepends) steps to an
    existing variant, keeping its callbacks

Registries are plain mappings that are never mutated: every registration
returns a new mapping.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping

from experiment_sdk.tier0_core.errors import ConfigurationError
from experiment_sdk.tier1_runtime.hooks import ABORT, Callback, Condition, HookChain, HookKind

CONTROL = "control"


@dataclass(frozen=True)
class StepResult:
    value: Any = None
    aborted_by: str | None = None

    @property
    def aborted(self) -> bool:
        return self.aborted_by is not None


@dataclass(frozen=True)
class StepChain:
    steps: tuple[Callback, ...] = ()

    @classmethod
    def of(cls, *steps: Callable[..., Any], if_: Condition = None, unless: Condition = None) -> "StepChain":
        return cls(tuple(Callback.wrap(s, if_=if_, unless=unless) for s in steps))

    def extend(self, other: "StepChain", *, prepend: bool = False) -> "StepChain":
        return StepChain(other.steps + self.steps if prepend else self.steps + other.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def run(self, target: Any) -> StepResult:
        value = None
        for step in self.steps:
            if not step.applies_to(target):
                continue
            returned = step(target)
            if returned is ABORT:
                return StepResult(value, aborted_by=step.name)
            if returned is not None:
                value = returned
        return StepResult(value)


@dataclass(frozen=True)
class Variant:
    name: str
    steps: StepChain
    callbacks: HookChain = field(default_factory=lambda: HookChain("variant"))

    def with_callback(
        self,
        kind: HookKind,
        fn: Callable[..., Any],
        *,
        if_: Condition = None,
        unless: Condition = None,
        prepend: bool = False,
    ) -> "Variant":
        return replace(
            self, callbacks=self.callbacks.add(kind, fn, if_=if_, unless=unless, prepend=prepend)
        )


Variants = Mapping[str, Variant]

EMPTY: Variants = MappingProxyType({})


def register_variant(
    variants: Variants,
    name: str,
    *steps: Callable[..., Any],
    override: bool = False,
    add: bool = False,
    prepend: bool = False,
    if_: Condition = None,
    unless: Condition = None,
) -> Variants:
    """Return a new registry with *name* registered, overridden or extended."""
    name = str(name)
    if override and add:
        raise ConfigurationError("Provide either `override=True` or `add=True` but not both")

    existing = variants.get(name)
    if existing is not None and not (override or add):
        raise ConfigurationError(
            f"The {name!r} variant is already registered. "
            "Provide `override=True` or `add=True` to make changes to it.",
            variant=name,
        )
    if existing is None and (override or add):
        raise ConfigurationError(
            f"Unable to override or add to unknown {name!r} variant", variant=name
        )
    if not steps:
        raise ConfigurationError(f"Provide at least one step for the {name!r} variant", variant=name)

    chain = StepChain.of(*steps, if_=if_, unless=unless)
    if existing is None:
        updated = Variant(name, chain, HookChain(f"{name}_variant"))
    elif add:
        updated = replace(existing, steps=existing.steps.extend(chain, prepend=prepend))
    else:
        updated = replace(existing, steps=chain)

    return MappingProxyType({**variants, name: updated})


def add_variant_callback(
    variants: Variants,
    name: str,
    kind: HookKind,
    fn: Callable[..., Any],
    *,
    if_: Condition = None,
    unless: Condition = None,
    prepend: bool = False,
) -> Variants:
    name = str(name)
    existing = variants.get(name)
    if existing is None:
        raise ConfigurationError(f"Unknown {name!r} variant", variant=name)
    updated = existing.with_callback(kind, fn, if_=if_, unless=unless, prepend=prepend)
    return MappingProxyType({**variants, name: updated})


__all__ = [
    "CONTROL",
    "StepResult",
    "StepChain",
    "Variant",
    "Variants",
    "EMPTY",
    "register_variant",
    "add_variant_callback",
]
