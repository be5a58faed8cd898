"""
experiment_sdk.tier3_platform.definition
──────────────────────────────────────────
The immutable experiment definition and the decorators used to declare it in
a class body.

A ``Definition`` holds everything resolution needs: variants, default
variant, segment rules, run callbacks, rollout and cache store. It is a
frozen value; administrative calls build a new definition with
``dataclasses.replace`` and swap it onto the class in one assignment, so runs
in flight keep reading the definition they started with.

Declaring an experiment:

    class ButtonColor(Experiment, rollout="percent"):
        @control
        def grey(self):
            return "grey"

        @variant("red")
        def red(self):
            return "red"

        @segment(into="red")
        def staff(self):
            return self.context.get("staff")

        @before_variant("red")
        def warm_cache(self):
            ...

Declarations apply in body order when the class is created.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

from experiment_sdk.tier0_core.errors import ConfigurationError
from experiment_sdk.tier1_runtime.hooks import Condition, HookChain, HookKind
from experiment_sdk.tier3_platform import segments as _segments
from experiment_sdk.tier3_platform import variants as _variants
from experiment_sdk.tier3_platform.variants import CONTROL, Variant


# ── Definition value ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Definition:
    name: str
    variants: Mapping[str, Variant] = field(default_factory=lambda: _variants.EMPTY)
    default_variant: str = CONTROL
    segments: HookChain = field(default_factory=_segments.new_segment_chain)
    run_callbacks: HookChain = field(
        default_factory=lambda: HookChain("run", skip_after_if_aborted=True)
    )
    rollout: Any = None
    cache_store: Any = None
    secret_key: str | None = None
    digest_bits: int | None = None
    log_context: bool = False

    @property
    def variant_names(self) -> list[str]:
        return list(self.variants)

    def with_variant(self, name: str, *steps: Callable[..., Any], **options: Any) -> "Definition":
        return replace(self, variants=_variants.register_variant(self.variants, name, *steps, **options))

    def with_variant_callback(
        self, name: str, kind: HookKind, fn: Callable[..., Any], **options: Any
    ) -> "Definition":
        return replace(
            self, variants=_variants.add_variant_callback(self.variants, name, kind, fn, **options)
        )

    def with_segment(
        self,
        predicate: Callable[..., Any] | None = None,
        *,
        into: str,
        if_: Condition = None,
        unless: Condition = None,
    ) -> "Definition":
        chain = _segments.register_segment(
            self.segments, self.variants, predicate, into=into, if_=if_, unless=unless
        )
        return replace(self, segments=chain)

    def with_run_callback(self, kind: HookKind, fn: Callable[..., Any], **options: Any) -> "Definition":
        return replace(self, run_callbacks=self.run_callbacks.add(kind, fn, **options))

    def with_default_variant(self, name: str) -> "Definition":
        name = str(name)
        if name not in self.variants:
            raise ConfigurationError(f"Unknown {name!r} variant", variant=name)
        return replace(self, default_variant=name)


# ── Naming ────────────────────────────────────────────────────────────────────

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def underscore(name: str) -> str:
    """``ButtonColor`` → ``button_color``; ``HTTPCache`` → ``http_cache``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def experiment_name_for(cls: type) -> str:
    """Snake-cased ``__qualname__`` parts joined with ``/``, without ``<locals>``."""
    parts = [p for p in cls.__qualname__.split(".") if p != "<locals>"]
    return "/".join(underscore(p) for p in parts)


# ── Class-body declarations ──────────────────────────────────────────────────

DECLARATIONS_ATTR = "__experiment_declarations__"


class Declaration:
    """
    A deferred change to a definition. Used as a decorator it records itself
    on the function; assigned bare in a class body it applies without one.
    """

    def __init__(self, method: str, *args: Any, **kwargs: Any) -> None:
        self.method = method
        self.args = args
        self.kwargs = kwargs

    def __call__(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        declared = list(getattr(fn, DECLARATIONS_ATTR, ()))
        declared.insert(0, (self, fn))
        setattr(fn, DECLARATIONS_ATTR, declared)
        return fn

    def apply(self, definition: Definition, fn: Callable[..., Any] | None = None) -> Definition:
        method = getattr(definition, self.method)
        if self.method == "with_variant":
            name, *steps = self.args
            return method(name, *steps, *([fn] if fn is not None else []), **self.kwargs)
        if self.method == "with_segment":
            return method(fn, **self.kwargs)
        if fn is None:
            raise ConfigurationError(f"{self!r} must decorate a function")
        return method(*self.args, fn, **self.kwargs)

    def __repr__(self) -> str:
        return f"<Declaration {self.method} args={self.args!r}>"


def declarations_in(namespace: Mapping[str, Any]) -> list[tuple[Declaration, Callable[..., Any] | None]]:
    """Collect declarations from a class namespace in body order."""
    found: list[tuple[Declaration, Callable[..., Any] | None]] = []
    for value in namespace.values():
        if isinstance(value, Declaration):
            found.append((value, None))
        elif callable(value):
            found.extend(getattr(value, DECLARATIONS_ATTR, ()))
    return found


def variant(
    name: str,
    *steps: Callable[..., Any],
    override: bool = False,
    add: bool = False,
    prepend: bool = False,
    if_: Condition = None,
    unless: Condition = None,
) -> Declaration:
    """Register the decorated function (after any *steps*) as variant *name*."""
    return Declaration(
        "with_variant", name, *steps,
        override=override, add=add, prepend=prepend, if_=if_, unless=unless,
    )


def control(fn: Callable[..., Any] | None = None, **options: Any) -> Any:
    """``@control`` or ``@control(override=True)``: the conventional baseline variant."""
    declaration = variant(CONTROL, **options)
    return declaration(fn) if fn is not None else declaration


def segment(*, into: str, if_: Condition = None, unless: Condition = None) -> Declaration:
    return Declaration("with_segment", into=into, if_=if_, unless=unless)


def _run_callback(kind: HookKind) -> Callable[..., Any]:
    def declare(fn: Callable[..., Any] | None = None, **options: Any) -> Any:
        declaration = Declaration("with_run_callback", kind, **options)
        return declaration(fn) if fn is not None else declaration

    declare.__name__ = f"{kind}_run"
    return declare


def _variant_callback(kind: HookKind) -> Callable[..., Declaration]:
    def declare(name: str, **options: Any) -> Declaration:
        return Declaration("with_variant_callback", name, kind, **options)

    declare.__name__ = f"{kind}_variant"
    return declare


before_run = _run_callback("before")
after_run = _run_callback("after")
around_run = _run_callback("around")
before_variant = _variant_callback("before")
after_variant = _variant_callback("after")
around_variant = _variant_callback("around")


__all__ = [
    "Definition",
    "Declaration",
    "declarations_in",
    "underscore",
    "experiment_name_for",
    "variant",
    "control",
    "segment",
    "before_run",
    "after_run",
    "around_run",
    "before_variant",
    "after_variant",
    "around_variant",
]
