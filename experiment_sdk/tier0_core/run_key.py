"""
experiment_sdk.tier0_core.run_key
──────────────────────────────────
Run keys: a SHA-2 hexdigest derived from an experiment context. The run key
is used as the cache key and as the hashing input for percentage rollouts,
so it must be a pure function of (experiment name, secret, context).

Context normalisation:
  - a mapping is flattened to its keys followed by its values
  - anything else is a single token

Each token is "identified" first: objects exposing ``to_global_id()`` are
replaced by that stable identifier. Tokens are then rendered as JSON literals
(``"930"``, ``42``, ``null``, ``{"a": 1}``), falling back to ``repr()`` for
values JSON cannot express. A ``repr()`` that embeds a memory address changes
on every process, so contexts should be cleanly identifiable.

Configure via: EXPERIMENT_SECRET_KEY, EXPERIMENT_DIGEST_BITS=256|384|512
"""
from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from experiment_sdk.tier0_core.errors import ConfigurationError
from experiment_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

DELIMITER = "|"

_DIGESTS = {
    256: hashlib.sha256,
    384: hashlib.sha384,
    512: hashlib.sha512,
}


@runtime_checkable
class GloballyIdentifiable(Protocol):
    """Objects with a stable external identifier, e.g. ``gid://app/User/42``."""

    def to_global_id(self) -> Any: ...


def identify(value: Any) -> Any:
    """
    Return the global id string for identifiable values, else the value itself.
    Identity failures fall back to the value silently (logged at debug).
    """
    if isinstance(value, GloballyIdentifiable):
        try:
            return str(value.to_global_id())
        except Exception as exc:
            logger.debug(
                "run_key.identify_failed",
                value_type=type(value).__name__,
                error=str(exc),
            )
    return value


def literal(token: Any) -> str:
    """Render a token as a JSON literal, or ``repr()`` when JSON can't."""
    try:
        return json.dumps(token, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(token)


def tokens_for(context: Any) -> list[Any]:
    """Flatten a context into the ordered tokens that feed the digest."""
    if isinstance(context, Mapping):
        return list(context.keys()) + list(context.values())
    return [context]


def run_key(
    experiment_name: str,
    secret: str | None,
    context: Any,
    *,
    bits: int = 256,
) -> str:
    """
    Compute the lowercase hex run key for a context.

    Usage:
        run_key("checkout/button_color", "s3cret", {"user_id": 42})
    """
    digest = _DIGESTS.get(bits)
    if digest is None:
        raise ConfigurationError(
            f"Unsupported digest size {bits!r}. Supported: 256, 384, 512",
            bits=bits,
        )

    ingredients = [experiment_name, secret or ""]
    ingredients.extend(literal(identify(token)) for token in tokens_for(context))
    return digest(DELIMITER.join(ingredients).encode("utf-8")).hexdigest()


__all__ = ["GloballyIdentifiable", "identify", "literal", "tokens_for", "run_key"]
