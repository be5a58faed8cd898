"""
experiment_sdk.tier3_platform.experiment
──────────────────────────────────────────
The ``Experiment`` base class: class-level definition management and the
per-run resolve → execute → report pipeline.

Resolution order for ``run()``:
  1. skipped (``skip()`` or ``rollout.enabled_for`` is false):
     the preset variant, else the default variant; segment rules, the
     rollout and the cache store are never touched
  2. otherwise ``cache_store.fetch(cache_key, skip_nil=True)`` around:
     the preset variant, else segment rules, else ``rollout.variant_for``
  3. still nothing: the default variant

The resolved variant's steps run inside its variant callbacks, and the whole
sequence runs inside the run callbacks. A variant that resolves to an
unregistered name never raises: the run returns ``None`` and its completion
event carries an error classification.

Configure via: EXPERIMENT_DEFAULT_ROLLOUT, EXPERIMENT_DEFAULT_CACHE_STORE,
               EXPERIMENT_SECRET_KEY, EXPERIMENT_DIGEST_BITS
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from types import MethodType
from typing import Any, Callable, ClassVar, Iterator

import structlog

from experiment_sdk.tier0_core.config import get_config
from experiment_sdk.tier0_core.errors import ExecutionError, ValidationError
from experiment_sdk.tier0_core.ids import new_uuid4
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier0_core.logging import tagged as _tagged
from experiment_sdk.tier0_core.run_key import run_key as _run_key
from experiment_sdk.tier1_runtime.context import record_executed, track_running
from experiment_sdk.tier1_runtime.hooks import Callback, HookKind
from experiment_sdk.tier1_runtime.instrumentation import EventName, RunEvent, emit, instrument
from experiment_sdk.tier1_runtime.serialize import RunRecord, to_dict
from experiment_sdk.tier2_reliability.cache import lookup_cache_store
from experiment_sdk.tier3_platform.configured import ConfiguredExperiment
from experiment_sdk.tier3_platform.definition import (
    Declaration,
    Definition,
    declarations_in,
    experiment_name_for,
)
from experiment_sdk.tier3_platform.rollouts import build_rollout, validate_rollout
from experiment_sdk.tier3_platform.variants import CONTROL, StepChain

_UNSET = object()


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STEPS_EXECUTED = "steps_executed"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


class Resolution(str, Enum):
    SKIPPED = "skipped"
    PRESET = "preset"
    CACHED = "cached"
    SEGMENT = "segment"
    ROLLOUT = "rollout"
    DEFAULT = "default"


class _FromDefinition:
    """Read-only attribute served from ``cls.definition`` on classes and instances."""

    def __init__(self, attr: str) -> None:
        self.attr = attr

    def __set_name__(self, owner: type, name: str) -> None:
        self.attr = self.attr or name

    def __get__(self, obj: Any, owner: type) -> Any:
        definition = (obj if obj is not None else owner).definition
        return getattr(definition, self.attr)


class _ClassOrInstanceMethod:
    """Dispatch to *on_class* when looked up on the class, *on_instance* otherwise."""

    def __init__(self, on_class: Callable[..., Any], on_instance: Callable[..., Any]) -> None:
        self.on_class = on_class
        self.on_instance = on_instance

    def __get__(self, obj: Any, owner: type) -> Callable[..., Any]:
        if obj is None:
            return MethodType(self.on_class, owner)
        return MethodType(self.on_instance, obj)


class Experiment:
    """
    Base class for experiments. Subclass it, declare variants in the body and
    run it with ``MyExperiment.run_for(context)`` or
    ``MyExperiment(context).run()``.
    """

    definition: ClassVar[Definition] = Definition(name="experiment")
    _default_rollout: ClassVar[tuple[Any, dict[str, Any]] | None] = None
    _default_cache_store: ClassVar[tuple[Any, dict[str, Any]] | None] = None

    name = _FromDefinition("name")
    rollout = _FromDefinition("rollout")
    cache_store = _FromDefinition("cache_store")
    default_variant = _FromDefinition("default_variant")
    variants = _FromDefinition("variants")
    log_context = _FromDefinition("log_context")

    def __init_subclass__(
        cls,
        *,
        name: str | None = None,
        rollout: Any = None,
        rollout_options: dict[str, Any] | None = None,
        cache_store: Any = None,
        cache_options: dict[str, Any] | None = None,
        default_variant: str | None = None,
        secret_key: str | None = None,
        digest_bits: int | None = None,
        log_context: bool | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)

        definition = replace(
            cls.definition,
            name=name or experiment_name_for(cls),
            rollout=None,
            cache_store=None,
        )
        for declaration, fn in declarations_in(vars(cls)):
            definition = declaration.apply(definition, fn)
        if default_variant is not None:
            definition = definition.with_default_variant(default_variant)
        if secret_key is not None:
            definition = replace(definition, secret_key=secret_key)
        if digest_bits is not None:
            definition = replace(definition, digest_bits=digest_bits)
        if log_context is not None:
            definition = replace(definition, log_context=log_context)
        cls.definition = definition

        for attr, value in list(vars(cls).items()):
            if isinstance(value, Declaration):
                delattr(cls, attr)

        if rollout is not None:
            cls.use_rollout(rollout, **(rollout_options or {}))
        else:
            default, options = cls._rollout_default()
            cls.use_rollout(default, **options)
        if cache_store is not None:
            cls.use_cache_store(cache_store, **(cache_options or {}))
        else:
            default, options = cls._cache_store_default()
            cls.use_cache_store(default, **options)

    # ── Class-level administration ────────────────────────────────────────────

    @classmethod
    def _rollout_default(cls) -> tuple[Any, dict[str, Any]]:
        if cls._default_rollout is None:
            return get_config().default_rollout, {}
        rollout, options = cls._default_rollout
        return rollout, dict(options)

    @classmethod
    def _cache_store_default(cls) -> tuple[Any, dict[str, Any]]:
        if cls._default_cache_store is None:
            return get_config().default_cache_store, {}
        store, options = cls._default_cache_store
        return store, dict(options)

    @classmethod
    def set_default_rollout(cls, rollout: Any, **options: Any) -> None:
        """Use *rollout* here and in every subclass created afterwards."""
        validate_rollout(rollout)
        cls.use_rollout(rollout, **options)
        cls._default_rollout = (rollout, options)

    @classmethod
    def set_default_cache_store(cls, store: Any, **options: Any) -> None:
        """Use *store* here and in every subclass created afterwards."""
        cls.use_cache_store(store, **options)
        cls._default_cache_store = (store, options)

    @classmethod
    def use_rollout(cls, rollout: Any, **options: Any) -> None:
        cls.definition = replace(cls.definition, rollout=build_rollout(rollout, cls, **options))

    @classmethod
    def use_cache_store(cls, store: Any, **options: Any) -> None:
        cls.definition = replace(cls.definition, cache_store=lookup_cache_store(store, **options))

    @classmethod
    def use_default_variant(cls, name: str) -> None:
        cls.definition = cls.definition.with_default_variant(name)

    @classmethod
    def register_variant(cls, name: str, *steps: Callable[..., Any], **options: Any) -> None:
        cls.definition = cls.definition.with_variant(name, *steps, **options)

    @classmethod
    def register_control(cls, *steps: Callable[..., Any], **options: Any) -> None:
        cls.register_variant(CONTROL, *steps, **options)

    @classmethod
    def register_segment(cls, predicate: Callable[..., Any] | None = None, **options: Any) -> None:
        cls.definition = cls.definition.with_segment(predicate, **options)

    @classmethod
    def add_run_callback(cls, kind: HookKind, fn: Callable[..., Any], **options: Any) -> None:
        cls.definition = cls.definition.with_run_callback(kind, fn, **options)

    @classmethod
    def add_variant_callback(
        cls, name: str, kind: HookKind, fn: Callable[..., Any], **options: Any
    ) -> None:
        cls.definition = cls.definition.with_variant_callback(name, kind, fn, **options)

    @classmethod
    def clear_cache(cls, prefix: str | None = None) -> None:
        """Delete every cached assignment under *prefix* (this experiment by default)."""
        cls.definition.cache_store.delete_matched(prefix or cls.definition.name)

    @classmethod
    def run_for(cls, context: Any = None, block: Callable[..., Any] | None = None) -> Any:
        return cls(context).run(block)

    def _configure(cls, **options: Any) -> ConfiguredExperiment:
        return ConfiguredExperiment(cls, **options)

    # ── Instance ──────────────────────────────────────────────────────────────

    def __init__(self, context: Any = None) -> None:
        self.definition = type(self).definition
        self.context = {} if context is None else context
        self.run_id = new_uuid4()
        config = get_config()
        secret = self.definition.secret_key
        bits = self.definition.digest_bits
        self.run_key = _run_key(
            self.definition.name,
            config.secret_key if secret is None else secret,
            self.context,
            bits=config.digest_bits if bits is None else bits,
        )
        self.options: dict[str, Any] = {}
        self.state = RunState.NOT_STARTED
        self.resolution: Resolution | None = None
        self.error: str | None = None
        self._variant: str | None = None
        self._skip: bool | None = None
        self._results: Any = _UNSET
        self._step_overrides: dict[str, StepChain] = {}
        self._aborted_by: str | None = None

    @property
    def variant(self) -> str | None:
        return self._variant

    @property
    def variant_names(self) -> list[str]:
        return self.definition.variant_names

    @property
    def skipped(self) -> bool:
        if self._skip is None:
            self._skip = not self.definition.rollout.enabled_for(self)
        return self._skip

    @property
    def results(self) -> Any:
        return None if self._results is _UNSET else self._results

    @property
    def cache_key_prefix(self) -> str:
        return self.definition.name

    @property
    def cache_key(self) -> str:
        return f"{self.cache_key_prefix}/{self.run_key[:32]}"

    def _set(self, variant: str | None = None, **options: Any) -> "Experiment":
        """Merge *options* and assign *variant*. Chainable."""
        self.options = {**self.options, **options}
        if variant:
            variant = str(variant)
            if variant not in self.definition.variants:
                raise ValidationError(f"Unknown {variant!r} variant", fields={"variant": variant})
            self._variant = variant
        return self

    # Experiment.set(...) builds a ConfiguredExperiment; experiment.set(...) configures the run.
    set = _ClassOrInstanceMethod(_configure, _set)

    def skip(self) -> "Experiment":
        self._skip = True
        return self

    def on(self, *names: str, block: Callable[..., Any] | None = None) -> "Experiment":
        """
        Replace the steps of *names* for this run only. A block is required.

        Usage:
            experiment.on("red", block=lambda: render("red.html"))
        """
        self._register_override(names)(block)
        return self

    def override(self, *names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """
        Decorator form of ``on``.

        Usage:
            @experiment.override("red", "blue")
            def colourful():
                ...
        """
        return self._register_override(names)

    def _register_override(self, names: tuple) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        names = tuple(str(n) for n in names)
        for name in names:
            if name not in self.definition.variants:
                raise ValidationError(f"Unknown {name!r} variant", fields={"variant": name})

        def register(fn: Callable[..., Any]) -> Callable[..., Any]:
            if fn is None:
                raise ValidationError("Missing block")
            chain = StepChain.of(fn)
            for name in names:
                self._step_overrides[name] = chain
            return fn

        return register

    def cache_variant(self) -> None:
        """Persist the assigned variant for this context."""
        if not self._variant:
            raise ExecutionError("No variant assigned", experiment=self.definition.name)
        self.definition.cache_store.write(self.cache_key, self._variant)

    # ── Logging ───────────────────────────────────────────────────────────────

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(__name__).bind(experiment=self.definition.name, run_id=self.run_id)

    @contextmanager
    def tagged(self, **fields: Any) -> Iterator[None]:
        with _tagged(experiment=self.definition.name, run_id=self.run_id, **fields):
            yield

    # ── Serialization ─────────────────────────────────────────────────────────

    def to_record(self) -> RunRecord:
        return RunRecord(
            experiment=self.definition.name,
            run_id=self.run_id,
            run_key=self.run_key,
            variant=self._variant,
            skipped=self.skipped,
        )

    def serialize(self) -> dict[str, Any]:
        return to_dict(self.to_record())

    # ── Execution ─────────────────────────────────────────────────────────────

    def run(self, block: Callable[..., Any] | None = None) -> Any:
        """
        Resolve the variant and run its steps, returning the last step result.

        A second call returns the memoized result without running anything.
        Raises ExecutionError when the experiment has no variants.
        """
        if self._results is not _UNSET:
            return self._results
        if not self.variant_names:
            raise ExecutionError("No variants registered", experiment=self.definition.name)

        self._results = None
        self.state = RunState.RUNNING
        with track_running(self):
            emit(RunEvent(name=EventName.START, experiment=self, variant=self._variant))
            with instrument(EventName.COMPLETED, self) as payload:
                try:
                    with self._phase(EventName.RUN_CALLBACKS) as phase:
                        outcome = self.definition.run_callbacks.run(self, lambda: self._body(block))
                        phase.update(aborted=outcome.aborted, aborted_by=outcome.aborted_by)
                except BaseException:
                    self.state = RunState.ERRORED
                    payload["variant"] = self._variant
                    raise
                if outcome.aborted:
                    self._aborted_by = self._aborted_by or outcome.aborted_by
                    self._results = None
                self._finish(payload)

        record_executed(self)
        return self._results

    def _body(self, block: Callable[..., Any] | None) -> Any:
        if block is not None:
            Callback.wrap(block)(self)
        self._variant = self._resolve_variant()
        self._results = self._resolve_results()
        return self._results

    def _finish(self, payload: dict[str, Any]) -> None:
        if not self._aborted_by and self._variant not in self.definition.variants:
            self.error = (
                f"unknown {self._variant!r} variant resolved" if self._variant
                else "no variant resolved"
            )
        self.state = RunState.ABORTED if self._aborted_by else RunState.COMPLETED
        payload.update(
            aborted=self._aborted_by is not None,
            aborted_by=self._aborted_by,
            variant=self._variant,
            error=self.error,
        )

    @contextmanager
    def _phase(self, name: EventName) -> Iterator[dict[str, Any]]:
        before = self._variant
        with instrument(name, self) as payload:
            try:
                yield payload
            finally:
                if self._variant != before:
                    payload["variant"] = self._variant

    def _resolve_variant(self) -> str | None:
        if self.skipped:
            self.resolution = Resolution.PRESET if self._variant else Resolution.SKIPPED
            return self._variant or self.definition.default_variant

        preset = self._variant
        self.resolution = Resolution.CACHED
        resolved = self.definition.cache_store.fetch(
            self.cache_key, self._compute_variant, skip_nil=True
        )
        if self._variant or resolved:
            if preset:
                self.resolution = Resolution.PRESET
            return self._variant or resolved

        self.resolution = Resolution.DEFAULT
        return self.definition.default_variant

    def _compute_variant(self) -> str | None:
        if self._variant:
            self.resolution = Resolution.PRESET
            return self._variant

        if not self.definition.segments.empty:
            with self._phase(EventName.SEGMENT_CALLBACKS) as phase:
                outcome = self.definition.segments.run(self)
                phase.update(aborted=outcome.aborted, aborted_by=outcome.aborted_by)
            if self._variant:
                self.resolution = Resolution.SEGMENT
                return self._variant

        self.resolution = Resolution.ROLLOUT
        return self._variant or self.definition.rollout.variant_for(self)

    def _resolve_results(self) -> Any:
        registered = self.definition.variants.get(self._variant) if self._variant else None
        if registered is None:
            return None

        steps = self._step_overrides.get(registered.name, registered.steps)

        def execute() -> Any:
            with self._phase(EventName.VARIANT_STEPS) as phase:
                result = steps.run(self)
                phase.update(aborted=result.aborted, aborted_by=result.aborted_by)
            self.state = RunState.STEPS_EXECUTED
            if result.aborted:
                self._aborted_by = self._aborted_by or result.aborted_by
            return result.value

        with self._phase(EventName.VARIANT_CALLBACKS) as phase:
            outcome = registered.callbacks.run(self, execute)
            phase.update(aborted=outcome.aborted, aborted_by=outcome.aborted_by)
        if outcome.aborted:
            self._aborted_by = self._aborted_by or outcome.aborted_by
        return outcome.value

    def __repr__(self) -> str:
        return (
            f"<{type(self).__qualname__} variant={self._variant!r} skip={self._skip!r} "
            f"run_key={self.run_key[:16]}... context={self.context!r} options={self.options!r}>"
        )


__all__ = ["Experiment", "RunState", "Resolution"]
