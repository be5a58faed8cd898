"""
experiment_sdk.tier0_core.redact
─────────────────────────────────
Redaction for anything an experiment writes to a log line. Contexts are
arbitrary caller values (user records, request params), so a mapping is
redacted at any depth, including mappings nested in lists and tuples.

A key is sensitive when, lower-cased with ``-`` read as ``_``, it is one of
the sensitive names or ends with ``_<name>`` (``user_password``,
``X-Api-Key``).
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

SENSITIVE_NAMES: frozenset[str] = frozenset({
    "password", "passwd", "secret", "secret_key", "token", "api_key", "apikey",
    "authorization", "cookie", "session", "ssn", "card_number", "cvv",
})

REDACTED = "[REDACTED]"


def is_sensitive(key: Any, names: frozenset[str] = SENSITIVE_NAMES) -> bool:
    if not isinstance(key, str):
        return False
    normalized = key.lower().replace("-", "_")
    return normalized in names or any(normalized.endswith(f"_{name}") for name in names)


def redact(value: Any, names: frozenset[str] = SENSITIVE_NAMES) -> Any:
    """Return *value* with sensitive mapping entries replaced by REDACTED."""
    if isinstance(value, Mapping):
        return {
            k: REDACTED if is_sensitive(k, names) else redact(v, names)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, names) for item in value)
    return value


def redact_processor(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor; place it before the renderer."""
    return redact(event_dict)


__all__ = ["REDACTED", "SENSITIVE_NAMES", "is_sensitive", "redact", "redact_processor"]
