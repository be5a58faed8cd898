"""
experiment_sdk.tier1_runtime.retry
────────────────────────────────────
Opt-in retry/backoff for cache store adapters, backed by Tenacity.

The experiment core never retries on its own. An adapter built with
``retry_attempts > 1`` wraps its backend calls in ``retry_policy`` and
applies its fail-open fallback outside of it, so a store only reports a miss
once every attempt has failed. Experiment errors are never retried.

Usage:
    call = retry_policy(max_attempts=3, on=[redis.exceptions.ConnectionError])(call)
"""
from __future__ import annotations

import functools
from collections.abc import Callable, Iterable
from typing import Any, Type

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from experiment_sdk.tier0_core.errors import ExperimentError
from experiment_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)


def _retryable(on: Iterable[Type[BaseException]] | None) -> Callable[[BaseException], bool]:
    allowed = tuple(on) if on else (Exception,)

    def check(exc: BaseException) -> bool:
        return isinstance(exc, allowed) and not isinstance(exc, ExperimentError)

    return check


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.info(
        "cache_store.retrying",
        function=getattr(state.fn, "__qualname__", repr(state.fn)),
        attempt=state.attempt_number,
        error_type=type(exc).__name__ if exc else None,
    )


def retry_policy(
    max_attempts: int = 3,
    min_wait: float = 0.05,
    max_wait: float = 1.0,
    jitter: float = 0.05,
    on: Iterable[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter.

    Args:
        max_attempts: Total number of attempts, including the first.
        min_wait:     Minimum seconds between attempts.
        max_wait:     Maximum seconds between attempts.
        jitter:       Maximum random seconds added to each wait.
        on:           Exception types worth retrying (backend connectivity
                      errors). Defaults to any non-experiment error.
    """
    retry_on = retry_if_exception(_retryable(on))

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            retrying = Retrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(min=min_wait, max=max_wait) + wait_random(0, jitter),
                retry=retry_on,
                before_sleep=_log_retry,
                reraise=True,
            )
            return retrying(fn, *args, **kwargs)

        return wrapper
    return decorator


__all__ = ["retry_policy"]
