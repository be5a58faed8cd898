"""Tests for the log and metrics subscribers."""
from __future__ import annotations

from prometheus_client import REGISTRY

from experiment_sdk import ABORT, EventName, Experiment, RunEvent, control, variant
from experiment_sdk.tier0_core.metrics import default_label_values
from experiment_sdk.tier1_runtime.instrumentation import subscribe, subscribers
from experiment_sdk.tier3_platform.subscribers import (
    attach_log_subscriber,
    attach_metrics_subscriber,
    detach_subscribers,
    format_context,
    identifier,
    log_event,
    outcome_of,
    record_metrics,
)


class MetricsSubject(Experiment, name="subscribers_test/metrics_subject", log_context=True):
    @control
    def baseline(self):
        return "control"

    @variant("red")
    def red(self):
        return "red"


class User:
    def __init__(self, id):
        self.id = id

    def to_global_id(self):
        return f"gid://app/User/{self.id}"


def sample(variant, outcome):
    service, env = default_label_values()
    value = REGISTRY.get_sample_value(
        "experiment_runs_total",
        {
            "service": service,
            "env": env,
            "experiment": "subscribers_test/metrics_subject",
            "variant": variant,
            "outcome": outcome,
        },
    )
    return value or 0.0


# ── formatting ─────────────────────────────────────────────────────────────

class TestFormatting:
    def test_identifier(self):
        experiment = MetricsSubject({"id": 1})
        assert identifier(experiment) == f"MetricsSubject[{experiment.run_key[:8]}]"

    def test_format_context_identifies_nested_values(self):
        context = {"user": User(4), "items": [User(5), "plain"]}
        assert format_context(context) == {
            "user": "gid://app/User/4",
            "items": ["gid://app/User/5", "plain"],
        }


# ── log subscriber ─────────────────────────────────────────────────────────

class TestLogSubscriber:
    def test_attached_on_import(self):
        assert log_event in subscribers(EventName.START)

    def test_detach_and_reattach(self):
        detach_subscribers()
        try:
            assert log_event not in subscribers(EventName.START)
        finally:
            attach_log_subscriber()
        assert log_event in subscribers(EventName.START)

    def test_handles_every_event(self):
        experiment = MetricsSubject({"user": User(1), "password": "hunter2"})
        experiment.run()
        for name in EventName:
            log_event(RunEvent(name=name, experiment=experiment, variant="control"))
        log_event(RunEvent(name=EventName.COMPLETED, experiment=experiment, aborted=True,
                           aborted_by="halt"))
        log_event(RunEvent(name=EventName.COMPLETED, experiment=experiment,
                           exception=RuntimeError("boom")))
        log_event(RunEvent(name=EventName.COMPLETED, experiment=experiment,
                           error="no variant resolved"))


# ── metrics subscriber ─────────────────────────────────────────────────────

class TestMetricsSubscriber:
    def test_disabled_by_config(self):
        assert attach_metrics_subscriber() is False
        assert record_metrics not in subscribers(EventName.COMPLETED)

    def test_forced_attachment_counts_runs(self):
        assert attach_metrics_subscriber(force=True) is True
        before = sample("red", "completed")
        MetricsSubject.set(variant="red").run()
        assert sample("red", "completed") == before + 1

    def test_outcomes(self):
        experiment = MetricsSubject()
        assert outcome_of(RunEvent(name=EventName.COMPLETED, experiment=experiment,
                                   exception=RuntimeError())) == "failed"
        assert outcome_of(RunEvent(name=EventName.COMPLETED, experiment=experiment,
                                   aborted=True)) == "aborted"
        assert outcome_of(RunEvent(name=EventName.COMPLETED, experiment=experiment,
                                   error="no variant resolved")) == "errored"
        assert outcome_of(RunEvent(name=EventName.COMPLETED, experiment=experiment)) == "completed"
        assert outcome_of(RunEvent(name=EventName.COMPLETED,
                                   experiment=MetricsSubject().skip())) == "skipped"

    def test_aborted_runs_are_labelled(self):
        class Halting(MetricsSubject, name="subscribers_test/metrics_subject"):
            pass

        Halting.add_run_callback("before", lambda e: ABORT)
        attach_metrics_subscriber(force=True)
        before = sample("", "aborted")
        assert Halting.run_for() is None
        assert sample("", "aborted") == before + 1

    def test_counts_runs_with_context(self):
        attach_metrics_subscriber(force=True)
        before = sample("control", "completed")
        assert MetricsSubject.run_for({"id": 1}) == "control"
        assert sample("control", "completed") == before + 1


# ── subscriber faults ──────────────────────────────────────────────────────

class TestSubscriberFaults:
    def test_log_event_ignores_missing_experiment(self):
        for name in EventName:
            log_event(RunEvent(name=name, experiment=None))

    def test_record_metrics_ignores_missing_experiment(self):
        record_metrics(RunEvent(name=EventName.COMPLETED, experiment=None, variant="red"))

    def test_failing_subscriber_does_not_fail_the_run(self):
        def broken(event):
            raise RuntimeError("subscriber bug")

        subscribe("*", broken)
        assert MetricsSubject.set(variant="red").run() == "red"
