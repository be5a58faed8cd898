"""
experiment_sdk
──────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier0_core.errors import (
    ExperimentError,
    ConfigurationError,
    ExecutionError,
    ValidationError,
)
from experiment_sdk.tier0_core.config import get_config, ExperimentConfig
from experiment_sdk.tier0_core.run_key import run_key, GloballyIdentifiable

from experiment_sdk.tier1_runtime.hooks import ABORT, CONTINUE
from experiment_sdk.tier1_runtime.context import (
    executed_experiments,
    executed_to_json,
    executed_to_json_array,
    reset_executed,
    unit_of_work,
)
from experiment_sdk.tier1_runtime.instrumentation import (
    EventName,
    RunEvent,
    subscribe,
    unsubscribe,
)
from experiment_sdk.tier1_runtime.serialize import RunRecord

from experiment_sdk.tier2_reliability.cache import (
    CacheStore,
    NullCacheStore,
    MemoryCacheStore,
    lookup_cache_store,
    register_cache_store,
)

from experiment_sdk.tier3_platform.rollouts import (
    Rollout,
    BaseRollout,
    InactiveRollout,
    RandomRollout,
    PercentRollout,
    register_rollout,
    lookup_rollout,
)
from experiment_sdk.tier3_platform.definition import (
    variant,
    control,
    segment,
    before_run,
    after_run,
    around_run,
    before_variant,
    after_variant,
    around_variant,
)
from experiment_sdk.tier3_platform.experiment import Experiment, RunState, Resolution
from experiment_sdk.tier3_platform.configured import ConfiguredExperiment
from experiment_sdk.tier3_platform.subscribers import (
    attach_log_subscriber,
    attach_metrics_subscriber,
)

attach_log_subscriber()
attach_metrics_subscriber()

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "ExperimentError", "ConfigurationError", "ExecutionError", "ValidationError",
    # config
    "get_config", "ExperimentConfig",
    # run key
    "run_key", "GloballyIdentifiable",
    # hooks
    "ABORT", "CONTINUE",
    # executed experiments
    "executed_experiments", "executed_to_json", "executed_to_json_array",
    "reset_executed", "unit_of_work",
    # instrumentation
    "EventName", "RunEvent", "subscribe", "unsubscribe",
    # serialize
    "RunRecord",
    # cache
    "CacheStore", "NullCacheStore", "MemoryCacheStore",
    "lookup_cache_store", "register_cache_store",
    # rollouts
    "Rollout", "BaseRollout", "InactiveRollout", "RandomRollout", "PercentRollout",
    "register_rollout", "lookup_rollout",
    # declarations
    "variant", "control", "segment",
    "before_run", "after_run", "around_run",
    "before_variant", "after_variant", "around_variant",
    # experiments
    "Experiment", "RunState", "Resolution", "ConfiguredExperiment",
]
