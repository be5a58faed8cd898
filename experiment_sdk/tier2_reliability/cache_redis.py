"""
experiment_sdk.tier2_reliability.cache_redis
──────────────────────────────────────────────
Redis hash cache store. One hash per experiment, one field per run key:

  key:    <namespace>:<experiment name>
  fields: <run key prefix> → <variant name>

Dropping an experiment's assignments is a single DEL of its hash.
``length()`` counts experiment hashes; ``length(prefix)`` counts the
assignments stored for that experiment.

Every operation fails open: a Redis error is logged and treated as a cache
miss (reads) or a no-op (writes, deletes).

Minimal stack: redis-py
Configure via: REDIS_URL
"""
from __future__ import annotations

import re
from typing import Any, Callable

import redis

from experiment_sdk.tier0_core.config import get_config
from experiment_sdk.tier1_runtime.retry import retry_policy
from experiment_sdk.tier2_reliability.cache import BaseCacheStore
from experiment_sdk.tier2_reliability.fallback import with_fallback

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _glob_escape(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def _decode(value: Any) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisHashCacheStore(BaseCacheStore):
    """
    Usage:
        store = RedisHashCacheStore(url="redis://cache:6379/2", namespace="exp")
        store.length("checkout/button_color")
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        url: str | None = None,
        namespace: str | None = None,
        retry_attempts: int = 1,
        **options: Any,
    ) -> None:
        super().__init__(namespace=namespace, **options)
        self.client = client or redis.Redis.from_url(
            url or get_config().redis_url, decode_responses=True
        )

        def call(fn: Callable[..., Any], *args: Any) -> Any:
            return fn(*args)

        if retry_attempts > 1:
            call = retry_policy(
                max_attempts=retry_attempts,
                on=[redis.exceptions.ConnectionError, redis.exceptions.TimeoutError],
            )(call)
        self._call = call

    def split(self, key: str) -> tuple[str, str]:
        """Map a cache key to its (hash name, field)."""
        prefix, _, field = key.rpartition("/")
        if not prefix:
            return self.namespaced(field), ""
        return self.namespaced(prefix), field

    def _scan(self, pattern: str) -> list[Any]:
        return list(self.client.scan_iter(match=pattern))

    # ── Store operations ──────────────────────────────────────────────────────

    @with_fallback(default=None)
    def read(self, key: str) -> str | None:
        name, field = self.split(key)
        return _decode(self._call(self.client.hget, name, field))

    @with_fallback(default=None)
    def write(self, key: str, value: Any) -> None:
        if value is None:
            return
        name, field = self.split(key)
        self._call(self.client.hset, name, field, str(value))

    @with_fallback(default=None)
    def delete(self, key: str) -> None:
        name, field = self.split(key)
        self._call(self.client.hdel, name, field)

    @with_fallback(default=None)
    def delete_matched(self, prefix: str) -> None:
        name = self.namespaced(prefix.rstrip("/"))
        nested = self._scan(f"{_glob_escape(name)}/*")
        self._call(self.client.delete, name, *nested)

    @with_fallback(default=None)
    def clear(self) -> None:
        if self.namespace:
            keys = self._scan(f"{_glob_escape(self.namespace)}:*")
            if keys:
                self._call(self.client.delete, *keys)
        else:
            self._call(self.client.flushdb)

    @with_fallback(default=0)
    def length(self, prefix: str | None = None) -> int:
        if prefix is not None:
            return int(self._call(self.client.hlen, self.namespaced(prefix.rstrip("/"))))
        if self.namespace:
            return len(self._scan(f"{_glob_escape(self.namespace)}:*"))
        return int(self._call(self.client.dbsize))


__all__ = ["RedisHashCacheStore"]
