"""Tests for experiment_sdk.testing."""
from __future__ import annotations

import pytest

from experiment_sdk import Experiment, control, executed_experiments, variant
from experiment_sdk.testing import MockRollout, stub_experiment
from experiment_sdk.tier0_core.errors import ValidationError


class StubSubject(Experiment):
    @control
    def baseline(self):
        return "control"

    @variant("blue")
    def blue(self):
        return "blue"

    @variant("green")
    def green(self):
        return "green"


class OtherSubject(Experiment):
    @control
    def baseline(self):
        return "control"

    @variant("red")
    def red(self):
        return "red"


class TestStubExperiment:
    def test_no_overrides_uses_the_default_variant(self):
        with stub_experiment(OtherSubject) as rollout:
            assert OtherSubject.run_for() == "control"
            assert isinstance(rollout, MockRollout)

    def test_single_variant(self):
        with stub_experiment(StubSubject, "green"):
            assert StubSubject.run_for() == "green"
            assert StubSubject.run_for() == "green"

    def test_cycles_through_variants(self):
        with stub_experiment(StubSubject, "green", "blue"):
            assert [StubSubject.run_for() for _ in range(3)] == ["green", "blue", "green"]

    def test_variant_option(self):
        with stub_experiment(StubSubject, variant="green"):
            assert StubSubject.run_for() == "green"

    def test_variant_callable(self):
        def choose(experiment):
            return "green" if experiment.context.get("id") == 42 else "blue"

        with stub_experiment(StubSubject, variant=choose):
            assert StubSubject.run_for({"id": 1}) == "blue"
            assert StubSubject.run_for({"id": 42}) == "green"

    def test_skip(self):
        with stub_experiment(OtherSubject, "red", skip=True) as rollout:
            assert OtherSubject.run_for() == "control"
            assert rollout.enabled_for(OtherSubject()) is False
            assert rollout.variant_for(OtherSubject()) == "red"
            assert OtherSubject().skipped is True

    def test_nested_stubs(self):
        with stub_experiment(OtherSubject, "red"):
            with stub_experiment(StubSubject, "blue"):
                assert StubSubject.run_for() == "blue"
                assert OtherSubject.run_for() == "red"

    def test_restores_the_rollout(self):
        original = StubSubject.rollout
        with stub_experiment(StubSubject, "green"):
            assert StubSubject.rollout is not original
        assert StubSubject.rollout is original

    def test_restores_after_an_error(self):
        original = StubSubject.rollout
        with pytest.raises(RuntimeError):
            with stub_experiment(StubSubject, "green"):
                raise RuntimeError("test failure")
        assert StubSubject.rollout is original

    def test_unknown_variant(self):
        with pytest.raises(ValidationError, match="Unknown 'missing' variant"):
            with stub_experiment(StubSubject, "missing"):
                pass

    def test_skipped_runs_are_counted(self):
        with stub_experiment(StubSubject, skip=True):
            assert executed_experiments() == []
            StubSubject.run_for()
            assert len(executed_experiments()) == 1

    def test_records_calls(self):
        with stub_experiment(StubSubject, "blue") as rollout:
            experiment = StubSubject({"id": 7})
            experiment.run()
        assert rollout.calls == [experiment]
        assert repr(rollout) == "<MockRollout skip=False calls=1>"
