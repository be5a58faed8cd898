"""
experiment_sdk.tier2_reliability.fallback
───────────────────────────────────────────
Fail-open behavior for cache store adapters. A store that cannot reach its
backend must behave like a cache miss instead of failing the experiment run.

``with_fallback`` wraps a store operation: backend errors are logged as
``cache_store.fail_open`` and the operation returns *default* (``None`` for a
miss or a no-op write, ``0`` for ``length``). Experiment errors
(configuration or validation) always propagate.

Usage::

    class MyStore(CacheStore):
        @with_fallback(default=None)
        def read(self, key: str) -> str | None: ...
"""
from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from experiment_sdk.tier0_core.errors import ExperimentError
from experiment_sdk.tier0_core.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


def _describe(args: tuple[Any, ...]) -> dict[str, Any]:
    """Store and key of a bound store call, when present."""
    fields: dict[str, Any] = {}
    if args and not isinstance(args[0], (str, bytes)):
        fields["store"] = type(args[0]).__name__
        args = args[1:]
    if args and isinstance(args[0], str):
        fields["key"] = args[0]
    return fields


def with_fallback(
    default: Any,
    *,
    log_errors: bool = True,
    reraise: type[Exception] | tuple[type[Exception], ...] | None = None,
) -> Callable[[F], F]:
    """Return *default* when the wrapped operation raises; *reraise* types propagate."""
    propagate: tuple[type[Exception], ...] = (ExperimentError,)
    if reraise:
        propagate += reraise if isinstance(reraise, tuple) else (reraise,)

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except propagate:
                raise
            except Exception as exc:
                if log_errors:
                    logger.warning(
                        "cache_store.fail_open",
                        operation=fn.__name__,
                        error=str(exc),
                        error_type=type(exc).__name__,
                        **_describe(args),
                    )
                return default

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = ["with_fallback"]
