"""
experiment_sdk test configuration.

All tests run without external services: the null/memory cache stores by
default, in-memory SQLite for the SQL store and fakeredis for the Redis store.
"""
from __future__ import annotations

import os

import pytest

# ── Deterministic settings ────────────────────────────────────────────────
# These must be set before any experiment_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("EXPERIMENT_SECRET_KEY", "")
os.environ.setdefault("EXPERIMENT_DEFAULT_ROLLOUT", "base")
os.environ.setdefault("EXPERIMENT_DEFAULT_CACHE_STORE", "null")
os.environ.setdefault("EXPERIMENT_METRICS_ENABLED", "false")
os.environ.setdefault("EXPERIMENT_LOG_LEVEL", "DEBUG")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Give every test a fresh executed-experiments scope and restore the
    registries and base-class defaults a test may have changed.
    """
    import experiment_sdk.tier2_reliability.cache as _cache
    import experiment_sdk.tier3_platform.rollouts as _rollouts
    from experiment_sdk.tier1_runtime.context import reset_executed
    from experiment_sdk.tier1_runtime.instrumentation import subscribers, unsubscribe
    from experiment_sdk.tier3_platform.experiment import Experiment

    orig_definition = Experiment.definition
    orig_rollout = Experiment._default_rollout
    orig_cache_store = Experiment._default_cache_store
    orig_subscribers = set(subscribers())
    reset_executed()

    yield

    Experiment.definition = orig_definition
    Experiment._default_rollout = orig_rollout
    Experiment._default_cache_store = orig_cache_store
    for fn in set(subscribers()) - orig_subscribers:
        unsubscribe(fn)
    _rollouts._reset_registry()
    _cache._reset_registry()
    reset_executed()


@pytest.fixture
def events():
    """Collect every lifecycle event published during the test."""
    from experiment_sdk.tier1_runtime.instrumentation import subscribe, unsubscribe

    collected: list = []
    subscribe("*", collected.append)
    yield collected
    unsubscribe(collected.append)


@pytest.fixture
def sqlite_engine():
    """A single shared in-memory SQLite connection."""
    from sqlalchemy import create_engine
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def fake_redis():
    """A fakeredis client that decodes responses like the default client."""
    import fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()
