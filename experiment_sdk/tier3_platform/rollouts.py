"""
experiment_sdk.tier3_platform.rollouts
────────────────────────────────────────
Rollouts decide whether an experiment runs for a context and which variant
it gets. Any object with ``enabled_for(experiment)`` and
``variant_for(experiment)`` is a valid rollout.

Included rollouts (by registered name):
  base      always enabled, assigns the first declared variant
  inactive  never enabled, so every run is skipped
  random    a random variant per run, or once per context with cache=True
  percent   deterministic CRC32 buckets, evenly or by percentage rules

Rollouts are constructed per experiment class with
``Rollout(experiment_class, **options)`` and are not inherited by subclasses.

Usage:
    class ButtonColor(Experiment, rollout="percent",
                      rollout_options={"rules": {"red": 25, "blue": 75}}):
        ...

    register_rollout("feature_flag", "myapp.rollouts:FeatureFlagRollout")
"""
from __future__ import annotations

import random
import zlib
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from experiment_sdk._registry import Registry
from experiment_sdk.tier0_core.errors import ConfigurationError


@runtime_checkable
class Rollout(Protocol):
    def enabled_for(self, experiment: Any) -> bool: ...

    def variant_for(self, experiment: Any) -> str | None: ...


INVALID_ROLLOUT = "Invalid rollout. Rollouts must respond to enabled_for, variant_for."


class BaseRollout:
    """
    Base class for rollouts. Never skips and assigns the first declared
    variant unless a subclass overrides either operation.
    """

    def __init__(self, experiment_class: Any = None, *args: Any, **options: Any) -> None:
        self.experiment_class = experiment_class
        self.rollout_args = args
        self.rollout_options = options

    @classmethod
    def register_as(cls, name: str) -> type["BaseRollout"]:
        register_rollout(name, cls)
        return cls

    def enabled_for(self, experiment: Any) -> bool:
        return True

    def variant_for(self, experiment: Any) -> str | None:
        names = experiment.variant_names
        return names[0] if names else None

    def __repr__(self) -> str:
        opts = ", ".join(f"{k}={v!r}" for k, v in self.rollout_options.items())
        return f"<{type(self).__name__}{' ' + opts if opts else ''}>"


class InactiveRollout(BaseRollout):
    """Disables an experiment without removing it: every run is skipped."""

    def enabled_for(self, experiment: Any) -> bool:
        return False

    def variant_for(self, experiment: Any) -> str | None:
        return None


class RandomRollout(BaseRollout):
    """
    Assigns a random variant.

    With ``cache=True`` the sampled variant is returned and the experiment's
    cache store persists it, so a context keeps its first assignment. Without
    it, the variant is set directly on the experiment and ``None`` is
    returned, which keeps the assignment out of the cache: every run samples
    again. Pass ``seed=`` for a reproducible sequence.
    """

    def __init__(self, experiment_class: Any = None, *args: Any, **options: Any) -> None:
        super().__init__(experiment_class, *args, **options)
        seed = options.get("seed")
        self._random = random.Random(seed) if seed is not None else random

    def variant_for(self, experiment: Any) -> str | None:
        choice = self._random.choice(list(experiment.variant_names))
        if self.rollout_options.get("cache"):
            return choice
        experiment.set(variant=choice)
        return None


class PercentRollout(BaseRollout):
    """
    Deterministic assignment: ``crc32(run_key) % 100`` picks a bucket, and
    the first variant whose cumulative percentage reaches the bucket wins.

    ``rules`` is a mapping of variant → percent, or a list of percents in
    declared variant order, and must total 100. Without rules, variants are
    chosen by ``crc32(run_key) % len(variants)``, which is only roughly even
    when 100 isn't divisible by the variant count.
    """

    def __init__(self, experiment_class: Any = None, *args: Any, **options: Any) -> None:
        super().__init__(experiment_class, *args, **options)
        definition = getattr(experiment_class, "definition", None)
        self.validate(definition.variant_names if definition is not None else None)

    @property
    def rules(self) -> Any:
        return self.rollout_options.get("rules")

    def validate(self, variant_names: Sequence[str] | None) -> None:
        rules = self.rules
        if rules is not None and not isinstance(rules, (Mapping, list, tuple)):
            raise ConfigurationError(
                f"Unknown percent rules {rules!r}. Provide a mapping or a list of percentages.",
                rules=repr(rules),
            )
        if not variant_names or rules is None:
            return

        names = list(variant_names)
        percents = list(rules.values()) if isinstance(rules, Mapping) else list(rules)
        total = sum(percents)
        if total != 100:
            raise ConfigurationError(
                f"The provided rules total {total}%, but should be 100%", total=total
            )

        if isinstance(rules, Mapping):
            keys = [str(k) for k in rules]
            diff = [k for k in keys if k not in names] + [n for n in names if n not in keys]
            if diff:
                raise ConfigurationError(
                    f"The provided rules don't match the variants: {', '.join(diff)}",
                    mismatched=diff,
                )
        elif len(percents) != len(names):
            raise ConfigurationError(
                "The provided rules don't match the number of variants",
                rules=len(percents),
                variants=len(names),
            )

    def variant_for(self, experiment: Any) -> str | None:
        names = list(experiment.variant_names)
        if not names:
            return None
        crc = zlib.crc32(experiment.run_key.encode("utf-8"))
        rules = self.rules

        if rules is None:
            return names[crc % len(names)]

        bucket = crc % 100
        pairs = (
            [(str(k), v) for k, v in rules.items()]
            if isinstance(rules, Mapping)
            else list(zip(names, rules))
        )
        total = 0
        for name, percent in pairs:
            total += percent
            if bucket <= total:
                return name
        return None


# ── Registry and lookup ──────────────────────────────────────────────────────

_registry = Registry("rollout")
_BUILTINS: dict[str, type] = {
    "base": BaseRollout,
    "inactive": InactiveRollout,
    "random": RandomRollout,
    "percent": PercentRollout,
}
for _name, _cls in _BUILTINS.items():
    _registry.register(_name, _cls)


def register_rollout(name: str, rollout: type | str) -> None:
    """Register a rollout class, or a lazy ``"module:Class"`` path, under *name*."""
    if not isinstance(rollout, (type, str)):
        raise ConfigurationError(
            "Provide a class to register, or string for lazy loading", name=str(name)
        )
    _registry.register(name, rollout)


def lookup_rollout(name: str) -> type:
    try:
        rollout = _registry.get(name)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(
            f"No rollout registered for {str(name)!r}", name=str(name)
        ) from exc
    if rollout is None:
        raise ConfigurationError(f"No rollout registered for {str(name)!r}", name=str(name))
    return rollout


def registered_rollouts() -> list[str]:
    return _registry.names()


def build_rollout(rollout: Any, experiment_class: Any = None, **options: Any) -> Rollout:
    """
    Resolve *rollout* (a registered name, a rollout class or a rollout object)
    into a rollout instance bound to *experiment_class*.
    """
    if isinstance(rollout, str):
        rollout = lookup_rollout(rollout)
    if isinstance(rollout, type):
        rollout = rollout(experiment_class, **options)
    if not isinstance(rollout, Rollout):
        raise ConfigurationError(INVALID_ROLLOUT, rollout=repr(rollout))
    return rollout


def validate_rollout(rollout: Any) -> None:
    """Check a default-rollout setting without binding it to a class."""
    if isinstance(rollout, str):
        lookup_rollout(rollout)
        return
    if isinstance(rollout, type):
        if not (callable(getattr(rollout, "enabled_for", None))
                and callable(getattr(rollout, "variant_for", None))):
            raise ConfigurationError(INVALID_ROLLOUT, rollout=repr(rollout))
        return
    if not isinstance(rollout, Rollout):
        raise ConfigurationError(INVALID_ROLLOUT, rollout=repr(rollout))


def _reset_registry() -> None:
    """Restore the built-in rollout names. For tests only."""
    for name in registered_rollouts():
        if name not in _BUILTINS:
            _registry.unregister(name)
    for name, cls in _BUILTINS.items():
        _registry.register(name, cls)


__all__ = [
    "Rollout",
    "BaseRollout",
    "InactiveRollout",
    "RandomRollout",
    "PercentRollout",
    "register_rollout",
    "lookup_rollout",
    "registered_rollouts",
    "build_rollout",
    "validate_rollout",
]
