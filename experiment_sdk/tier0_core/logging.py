"""
experiment_sdk.tier0_core.logging
──────────────────────────────────
Structured logs for experiment runs. Fields bound with ``bind_context`` or
``tagged`` (unit of work, experiment, run id) are merged into every line, and
sensitive keys are redacted before rendering.

Only the ``experiment_sdk`` logger tree gets a handler; host applications
keep their own logging setup. ``get_logger`` configures on first use, and
``configure_logging`` can be called again to switch level or format.

Minimal stack: structlog (stdout JSON or console)
Configure via: EXPERIMENT_LOG_LEVEL, EXPERIMENT_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from experiment_sdk.tier0_core.config import get_config
from experiment_sdk.tier0_core.redact import redact_processor

ROOT_LOGGER = "experiment_sdk"

_handler: logging.Handler | None = None


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_processor,
    ]


def _renderer(fmt: str) -> Any:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(default=repr)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """(Re)configure structlog and the ``experiment_sdk`` stdlib handler."""
    global _handler
    config = get_config()
    numeric_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)
    shared = _shared_processors()

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer((fmt or config.log_format).lower()),
            ],
        )
    )

    root = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root.propagate = False
    _handler = handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger, configuring logging on first use.

    Usage:
        log = get_logger(__name__)
        log.info("experiment.start", experiment="checkout/button_color")
    """
    if _handler is None:
        configure_logging()
    return structlog.get_logger(name or ROOT_LOGGER)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every log line of the current thread or task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all bound fields. Call at the end of a unit of work."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def tagged(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of the block only."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


__all__ = ["configure_logging", "get_logger", "bind_context", "clear_context", "tagged"]
