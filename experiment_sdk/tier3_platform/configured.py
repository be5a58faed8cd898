"""
experiment_sdk.tier3_platform.configured
──────────────────────────────────────────
``Experiment.set(...)`` returns a ConfiguredExperiment: the experiment class
plus options applied to every instance it builds.

Usage:
    ButtonColor.set(variant="red").run({"user_id": 42})

    # assign and persist variants ahead of time
    ButtonColor.set(variant="red").cache_each(beta_users)
"""
from __future__ import annotations

from typing import Any, Callable, Iterable


class ConfiguredExperiment:
    def __init__(self, experiment_class: type, **options: Any) -> None:
        self.experiment_class = experiment_class
        self.options = options

    def experiment(self, context: Any = None) -> Any:
        return self.experiment_class(context).set(**self.options)

    def run(self, context: Any = None, block: Callable[..., Any] | None = None) -> Any:
        return self.experiment(context).run(block)

    def cache_each(self, contexts: Iterable[Any]) -> None:
        """Write the configured variant to the cache store for every context."""
        for context in contexts:
            self.experiment(context).cache_variant()

    def __repr__(self) -> str:
        return f"<ConfiguredExperiment {self.experiment_class.__qualname__} {self.options!r}>"


__all__ = ["ConfiguredExperiment"]
