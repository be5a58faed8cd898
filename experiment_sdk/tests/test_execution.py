"""Tests for running experiments: resolution, caching, executed experiments and events."""
from __future__ import annotations

import asyncio

import pytest

from experiment_sdk import (
    EventName,
    Experiment,
    MemoryCacheStore,
    Resolution,
    RunState,
    control,
    executed_experiments,
    executed_to_json,
    executed_to_json_array,
    reset_executed,
    segment,
    unit_of_work,
    variant,
)
from experiment_sdk.tier0_core.errors import ExecutionError, ValidationError
from experiment_sdk.tier1_runtime.context import get_execution_context, running_experiments
from experiment_sdk.tier3_platform.configured import ConfiguredExperiment


class ExecutionSubject(Experiment):
    @variant("red")
    def red(self):
        return "red"

    @variant("blue")
    def blue(self):
        return f"blue {self.options!r}"

    @control
    def baseline(self):
        return "control"


class NoControl(Experiment):
    @variant("treatment")
    def treatment(self):
        return "treatment"


class OptionsSubject(Experiment):
    @variant("options")
    def options_step(self):
        return self.options


@pytest.fixture(autouse=True)
def restore_subjects():
    saved = ExecutionSubject.definition, NoControl.definition
    yield
    ExecutionSubject.definition, NoControl.definition = saved


# ── execution ──────────────────────────────────────────────────────────────

class TestExecution:
    def test_setting_options_at_the_class_level(self):
        configured = ExecutionSubject.set(variant="blue", foo="bar")
        assert isinstance(configured, ConfiguredExperiment)
        assert configured.run() == "blue {'foo': 'bar'}"

    def test_setting_options_on_an_instance(self):
        assert ExecutionSubject().set(variant="blue", foo="bar").run() == "blue {'foo': 'bar'}"

    def test_setting_options_within_the_run_block(self):
        result = ExecutionSubject.run_for(block=lambda e: e.set(variant="blue", foo="bar"))
        assert result == "blue {'foo': 'bar'}"

    def test_options_are_merged(self):
        result = OptionsSubject.set(variant="options", foo="bar", bar="baz").run(
            None, lambda e: e.set(bar="qux", baz="foo")
        )
        assert result == {"foo": "bar", "bar": "qux", "baz": "foo"}

    def test_setting_an_unknown_variant(self):
        with pytest.raises(ValidationError, match="Unknown 'purple' variant"):
            ExecutionSubject().set(variant="purple")

    def test_overriding_multiple_variants(self):
        result = ExecutionSubject.run_for(
            block=lambda e: e.on("red", "blue", block=lambda: "purple")
        )
        assert result == "purple"

    def test_overriding_without_a_block(self):
        errors = []

        def block(experiment):
            with pytest.raises(ValidationError) as exc_info:
                experiment.on("red", block=None)
            errors.append(str(exc_info.value))

        ExecutionSubject.run_for(block=block)
        assert errors == ["Missing block"]

    def test_overriding_with_the_block_omitted(self):
        with pytest.raises(ValidationError, match="Missing block"):
            ExecutionSubject().on("red")

    def test_override_decorator(self):
        experiment = ExecutionSubject().set(variant="red")

        @experiment.override("red")
        def purple():
            return "purple"

        assert experiment.run() == "purple"

    def test_overriding_an_unknown_variant(self):
        errors = []

        def block(experiment):
            with pytest.raises(ValidationError) as exc_info:
                experiment.on("foo", block=lambda: None)
            errors.append(str(exc_info.value))

        ExecutionSubject.run_for(block=block)
        assert errors == ["Unknown 'foo' variant"]

    def test_running_without_variants(self):
        class NoVariants(Experiment):
            pass

        with pytest.raises(ExecutionError) as exc_info:
            NoVariants.run_for()
        assert str(exc_info.value) == "No variants registered"

    def test_skipped_runs_use_the_default_variant(self):
        skipped = []

        def block(experiment):
            experiment.skip()
            skipped.append(experiment.skipped)

        assert ExecutionSubject.run_for(block=block) == "control"
        assert skipped == [True]

    def test_skipped_without_a_control(self):
        experiment = NoControl()
        assert experiment.run(lambda e: e.skip()) is None
        assert experiment.error == "unknown 'control' variant resolved"
        assert experiment.resolution is Resolution.SKIPPED

    def test_running_twice_is_memoized(self):
        calls = []
        ExecutionSubject.register_variant("red", lambda: calls.append(1), add=True)
        experiment = ExecutionSubject()

        def fail(e):
            raise AssertionError("should not be called")

        assert experiment.run() == "red"
        assert experiment.run(fail) == "red"
        assert calls == [1]
        assert len(executed_experiments()) == 1

    def test_context_defaults_to_empty_mapping(self):
        assert ExecutionSubject().context == {}

    def test_step_errors_propagate(self, events):
        def boom():
            raise RuntimeError("step failed")

        ExecutionSubject.register_variant("red", boom, override=True)
        experiment = ExecutionSubject()
        with pytest.raises(RuntimeError, match="step failed"):
            experiment.run()

        assert experiment.state is RunState.ERRORED
        assert executed_experiments() == []
        completed = [e for e in events if e.name is EventName.COMPLETED]
        assert isinstance(completed[0].exception, RuntimeError)
        assert running_experiments() == []

    def test_unknown_variant_from_rollout_degrades_to_none(self, events):
        class Misconfigured:
            def enabled_for(self, experiment):
                return True

            def variant_for(self, experiment):
                return "purple"

        ExecutionSubject.use_rollout(Misconfigured())
        experiment = ExecutionSubject()
        assert experiment.run() is None
        assert experiment.variant == "purple"
        assert experiment.error == "unknown 'purple' variant resolved"
        completed = [e for e in events if e.name is EventName.COMPLETED][0]
        assert completed.error == "unknown 'purple' variant resolved"
        assert completed.exception is None

    def test_missing_variant_falls_back_to_default(self):
        class Undecided:
            def enabled_for(self, experiment):
                return True

            def variant_for(self, experiment):
                return None

        ExecutionSubject.use_rollout(Undecided())
        experiment = ExecutionSubject()
        assert experiment.run() == "control"
        assert experiment.resolution is Resolution.DEFAULT

    def test_states_and_resolutions(self):
        experiment = ExecutionSubject()
        assert experiment.state is RunState.NOT_STARTED
        experiment.run()
        assert experiment.state is RunState.COMPLETED
        assert experiment.resolution is Resolution.ROLLOUT

        preset = ExecutionSubject().set(variant="red")
        preset.run()
        assert preset.resolution is Resolution.PRESET

    def test_nested_runs(self):
        inner_running = []

        class Outer(Experiment):
            @variant("outer")
            def outer(self):
                inner_running.append(len(running_experiments()))
                return ExecutionSubject.run_for()

        assert Outer.run_for() == "red"
        assert inner_running == [1]
        assert [type(e) for e in executed_experiments()] == [ExecutionSubject, Outer]

    def test_repr(self):
        text = repr(ExecutionSubject({"user_id": 1}))
        assert text.startswith("<ExecutionSubject variant=None")
        assert "{'user_id': 1}" in text


# ── serialization ──────────────────────────────────────────────────────────

class SerializeSubject(Experiment, name="serialize_test/subject_experiment"):
    @control
    def baseline(self):
        return "control"

    @variant("treatment")
    def treatment(self):
        return "treatment"


class TestSerialization:
    def test_serialize(self, monkeypatch):
        monkeypatch.setattr(
            "experiment_sdk.tier3_platform.experiment.new_uuid4",
            lambda: "1fbde0db-2c9f-4ed8-83b7-b30293d644ae",
        )
        experiment = SerializeSubject("bar").set(variant="treatment")
        record = experiment.serialize()
        assert record["experiment"] == "serialize_test/subject_experiment"
        assert record["run_id"] == "1fbde0db-2c9f-4ed8-83b7-b30293d644ae"
        assert record["variant"] == "treatment"
        assert record["skipped"] is False
        assert len(record["run_key"]) == 64

    def test_unresolved_variant_serializes_blank(self):
        assert SerializeSubject().to_record().variant == ""


# ── caching ────────────────────────────────────────────────────────────────

class CachingSubject(
    Experiment,
    name="caching_test/subject_experiment",
    cache_store="memory",
    default_variant="red",
):
    @variant("red")
    def red(self):
        return "red"

    @variant("blue")
    def blue(self):
        return "blue"


@pytest.fixture
def cache():
    store = CachingSubject.cache_store
    store.clear()
    yield store
    store.clear()


class TestCaching:
    def test_default_store_is_null(self):
        from experiment_sdk import NullCacheStore

        class Uncached(Experiment):
            pass

        assert isinstance(Uncached.cache_store, NullCacheStore)

    def test_store_by_name(self):
        assert isinstance(CachingSubject.cache_store, MemoryCacheStore)

    def test_store_instance(self):
        store = MemoryCacheStore(namespace="custom")

        class CustomStore(Experiment, cache_store=store):
            pass

        assert CustomStore.cache_store is store

    def test_redis_hash_store(self, fake_redis):
        from experiment_sdk.tier2_reliability.cache_redis import RedisHashCacheStore

        class RedisCached(CachingSubject, cache_store="redis_hash", cache_options={"client": fake_redis}):
            pass

        experiment = RedisCached()
        assert experiment.run() == "red"
        assert isinstance(RedisCached.cache_store, RedisHashCacheStore)
        assert RedisCached.cache_store.read(experiment.cache_key) == "red"
        assert fake_redis.hlen(RedisCached.name) == 1

    def test_assigned_variant_is_cached(self, cache):
        experiment = CachingSubject()
        assert experiment.set(variant="blue").run() == "blue"
        assert cache.read(experiment.cache_key) == "blue"

    def test_resolved_variant_is_cached(self, cache):
        experiment = CachingSubject()
        assert experiment.run() == "red"
        assert cache.read(experiment.cache_key) == "red"

    def test_skipped_runs_are_not_cached(self, cache):
        experiment = CachingSubject().skip()
        assert experiment.run() == "red"
        assert cache.read(experiment.cache_key) is None

    def test_skipped_runs_with_a_variant_are_not_cached(self, cache):
        experiment = CachingSubject().skip().set(variant="blue")
        assert experiment.run() == "blue"
        assert experiment.resolution is Resolution.PRESET
        assert cache.length() == 0

    def test_cached_variant_is_used(self, cache):
        experiment = CachingSubject()
        cache.write(experiment.cache_key, "blue")
        assert experiment.run() == "blue"
        assert experiment.resolution is Resolution.CACHED

    def test_preset_variant_wins_over_cache(self, cache):
        experiment = CachingSubject()
        cache.write(experiment.cache_key, "blue")
        assert experiment.set(variant="red").run() == "red"
        assert experiment.resolution is Resolution.PRESET
        assert cache.read(experiment.cache_key) == "blue"

    def test_cache_each(self, cache):
        CachingSubject.set(variant="blue").cache_each([1, 2, 3])
        for key in (
            "caching_test/subject_experiment/ddcfc1505fdcb8b5c4022c4b6d4bb5da",
            "caching_test/subject_experiment/e862b4fc3c3287350118eaa1a4c561af",
            "caching_test/subject_experiment/e2eda826db2757a9110ebfc89ea15920",
        ):
            assert cache.read(key) == "blue"

    def test_cache_variant_requires_a_variant(self):
        with pytest.raises(ExecutionError, match="No variant assigned"):
            CachingSubject().cache_variant()

    def test_cache_key(self):
        experiment = CachingSubject(1)
        assert experiment.cache_key == (
            "caching_test/subject_experiment/ddcfc1505fdcb8b5c4022c4b6d4bb5da"
        )

    def test_clear_cache(self, cache):
        CachingSubject.set(variant="blue").cache_each([1, 2])
        cache.write("other/abc", "red")
        CachingSubject.clear_cache()
        assert cache.length() == 1
        assert cache.read("other/abc") == "red"


# ── executed experiments ───────────────────────────────────────────────────

class ExecutedSubject(Experiment, name="executed_test/subject_experiment"):
    @variant("red")
    def red(self):
        return "red"

    @variant("blue")
    def blue(self):
        return "blue"


@pytest.fixture
def fixed_run_id(monkeypatch):
    monkeypatch.setattr("experiment_sdk.tier3_platform.experiment.new_uuid4", lambda: "1fbde0db")


class TestExecutedExperiments:
    def test_runs_are_recorded(self, fixed_run_id):
        ExecutedSubject.run_for("foo")
        ExecutedSubject.set(variant="blue").run("bar")
        assert len(executed_experiments()) == 2

    def test_to_json(self, fixed_run_id):
        ExecutedSubject.run_for("foo")
        ExecutedSubject.set(variant="blue").run("bar")
        assert executed_to_json() == {
            "executed_test/subject_experiment": {
                "experiment": "executed_test/subject_experiment",
                "run_id": "1fbde0db",
                "run_key": "1a4faf1902a78648456ead5dc882f514685936698e1c60094cf17c238fe1f858",
                "variant": "blue",
                "skipped": False,
            }
        }

    def test_to_json_array(self, fixed_run_id):
        ExecutedSubject.run_for("foo")
        ExecutedSubject.set(variant="blue").run("bar")
        assert executed_to_json_array() == [
            {
                "experiment": "executed_test/subject_experiment",
                "run_id": "1fbde0db",
                "run_key": "1f82a46e1375cbd4e302489f0a1931908a50cd7216965687bee202d08cacf789",
                "variant": "red",
                "skipped": False,
            },
            {
                "experiment": "executed_test/subject_experiment",
                "run_id": "1fbde0db",
                "run_key": "1a4faf1902a78648456ead5dc882f514685936698e1c60094cf17c238fe1f858",
                "variant": "blue",
                "skipped": False,
            },
        ]

    def test_reset(self):
        ExecutedSubject.run_for("foo")
        assert len(executed_experiments()) == 1
        reset_executed()
        assert executed_experiments() == []

    def test_skipped_runs_are_recorded(self):
        ExecutedSubject(None).skip().run()
        assert executed_experiments()[0].skipped

    def test_unit_of_work_scopes_runs(self):
        with unit_of_work() as ctx:
            ExecutedSubject.run_for("foo")
            assert len(executed_experiments()) == 1
            assert get_execution_context().unit_id == ctx.unit_id
        assert executed_experiments() == []

    def test_concurrent_tasks_record_separately(self):
        get_execution_context()

        async def job(context):
            ExecutedSubject.run_for(context)
            await asyncio.sleep(0)
            return [e.context for e in executed_experiments()]

        async def main():
            return await asyncio.gather(job("foo"), job("bar"))

        assert asyncio.run(main()) == [["foo"], ["bar"]]
        assert executed_experiments() == []


# ── lifecycle events ───────────────────────────────────────────────────────

class EventSubject(Experiment):
    @control
    def baseline(self):
        return "control"

    @variant("beta")
    def beta(self):
        return "beta"

    @segment(into="beta")
    def beta_users(self):
        return self.context.get("beta")


class TestLifecycleEvents:
    def test_event_order(self, events):
        experiment = EventSubject({"beta": False})
        experiment.run()
        assert [e.name for e in events] == [
            EventName.START,
            EventName.SEGMENT_CALLBACKS,
            EventName.VARIANT_STEPS,
            EventName.VARIANT_CALLBACKS,
            EventName.RUN_CALLBACKS,
            EventName.COMPLETED,
        ]
        assert all(e.experiment is experiment for e in events)
        assert events[-1].variant == "control"
        assert not events[-1].aborted

    def test_segment_event_reports_the_rule(self, events):
        EventSubject.run_for({"beta": True})
        segmented = [e for e in events if e.name is EventName.SEGMENT_CALLBACKS][0]
        assert segmented.aborted
        assert segmented.aborted_by == "beta_users"
        assert segmented.variant == "beta"

    def test_skipped_runs_skip_segment_event(self, events):
        EventSubject({"beta": True}).skip().run()
        names = [e.name for e in events]
        assert EventName.SEGMENT_CALLBACKS not in names
        assert names[0] is EventName.START
        assert names[-1] is EventName.COMPLETED

    def test_aborted_run_event(self, events):
        from experiment_sdk import ABORT

        def halt(experiment):
            return ABORT

        class Halting(EventSubject):
            pass

        Halting.add_run_callback("before", halt)
        Halting.run_for()
        completed = events[-1]
        assert completed.name is EventName.COMPLETED
        assert completed.aborted
        assert completed.aborted_by == "halt"
        assert completed.error is None

    def test_memoized_runs_emit_nothing(self, events):
        experiment = EventSubject()
        experiment.run()
        count = len(events)
        experiment.run()
        assert len(events) == count
