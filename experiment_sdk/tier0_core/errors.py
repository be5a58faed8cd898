"""
experiment_sdk.tier0_core.errors
─────────────────────────────────
Standard error taxonomy for experiment definition and execution. Every error
carries a stable machine-readable code so reporting collaborators can
classify failures without parsing messages.

Configuration errors are raised while an experiment class is being defined
(fail fast). Execution errors are raised when running an experiment that
cannot run at all. Errors raised by user-supplied steps, rules and callbacks
are never wrapped: they reach the caller of ``run`` unchanged.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class ExperimentError(Exception):
    """
    Base class for all experiment errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - message: human readable description
    - metadata: internal context (experiment name, variant, ...)
    """

    code: str = "experiment_error"

    def __init__(
        self,
        message: str = "An unexpected experiment error occurred.",
        *,
        code: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.message = message
        self.metadata = metadata
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


# ── Typed error classes ───────────────────────────────────────────────────────

class ConfigurationError(ExperimentError):
    """Misconfiguration detected while defining an experiment or its rollout."""
    code = "configuration_error"


class ExecutionError(ExperimentError):
    """The experiment cannot be run (or cached) in its current state."""
    code = "execution_error"


class ValidationError(ExperimentError, ValueError):
    """Invalid arguments given to a live run instance (set/on)."""
    code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed.",
        *,
        code: str | None = None,
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(message, code=code, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


__all__ = [
    "ExperimentError",
    "ConfigurationError",
    "ExecutionError",
    "ValidationError",
]
