"""
experiment_sdk.tier2_reliability.cache
────────────────────────────────────────
Cache store contract for variant assignments, plus the null (default) and
in-process memory stores and the name → store registry.

Assignments are never expired: a context keeps its variant for the lifetime
of the experiment, and entries only disappear through ``delete`` /
``delete_matched`` / ``clear``. Values are stored as strings, and ``fetch``
stores a ``None`` result as the empty string (``NIL``) unless told to skip it.

Keys are ``"<experiment name>/<first 32 chars of the run key>"``; a store
built with ``namespace="app"`` stores them as ``"app:<key>"``.

Minimal stack: in-process dict (memory) | SQLAlchemy (sql) | redis (redis_hash)
Configure via: EXPERIMENT_DEFAULT_CACHE_STORE=null|memory|sql|redis_hash
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Protocol, runtime_checkable

from experiment_sdk._registry import Registry, import_object
from experiment_sdk.tier0_core.errors import ConfigurationError

# Stored in place of None by fetch(skip_nil=False).
NIL = ""


@runtime_checkable
class CacheStore(Protocol):
    """Anything implementing these operations can back experiment caching."""

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_matched(self, prefix: str) -> None: ...

    def clear(self) -> None: ...

    def length(self, prefix: str | None = None) -> int: ...

    def fetch(
        self, key: str, compute: Callable[[], Any], *, skip_nil: bool = False
    ) -> str | None: ...


class BaseCacheStore:
    """Namespace handling and ``fetch`` on top of read/write."""

    def __init__(self, *, namespace: str | None = None, **options: Any) -> None:
        self.namespace = namespace
        self.options = options

    def namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def read(self, key: str) -> str | None:
        raise NotImplementedError

    def write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_matched(self, prefix: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def length(self, prefix: str | None = None) -> int:
        raise NotImplementedError

    def fetch(
        self, key: str, compute: Callable[[], Any], *, skip_nil: bool = False
    ) -> str | None:
        """
        Return the stored value for *key*, or call *compute* and store its
        result. With *skip_nil* a ``None`` result is not stored, so a failed
        resolution is computed again on the next fetch. Without it ``None`` is
        stored as NIL and later fetches return ``None`` without computing.
        """
        value = self.read(key)
        if value is not None:
            return None if value == NIL else value
        value = compute()
        if value is None:
            if not skip_nil:
                self.write(key, NIL)
            return None
        value = str(value)
        self.write(key, value)
        return value

    def __repr__(self) -> str:
        ns = f" namespace={self.namespace!r}" if self.namespace else ""
        return f"<{type(self).__name__}{ns}>"


class NullCacheStore(BaseCacheStore):
    """Stores nothing. Every fetch computes."""

    def read(self, key: str) -> str | None:
        return None

    def write(self, key: str, value: Any) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def delete_matched(self, prefix: str) -> None:
        return None

    def clear(self) -> None:
        return None

    def length(self, prefix: str | None = None) -> int:
        return 0


class MemoryCacheStore(BaseCacheStore):
    """Thread-safe in-process store. Useful for tests and single-process apps."""

    def __init__(self, *, namespace: str | None = None, **options: Any) -> None:
        super().__init__(namespace=namespace, **options)
        self._store: dict[str, str] = {}
        self._lock = threading.RLock()

    def read(self, key: str) -> str | None:
        return self._store.get(self.namespaced(key))

    def write(self, key: str, value: Any) -> None:
        if value is None:
            return
        with self._lock:
            self._store[self.namespaced(key)] = str(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(self.namespaced(key), None)

    def delete_matched(self, prefix: str) -> None:
        full = self.namespaced(prefix)
        with self._lock:
            for key in [k for k in self._store if k.startswith(full)]:
                del self._store[key]

    def clear(self) -> None:
        if self.namespace:
            self.delete_matched("")
            return
        with self._lock:
            self._store.clear()

    def length(self, prefix: str | None = None) -> int:
        full = self.namespaced(prefix or "")
        return sum(1 for k in list(self._store) if k.startswith(full))

    def fetch(
        self, key: str, compute: Callable[[], Any], *, skip_nil: bool = False
    ) -> str | None:
        # Memory fetches are atomic per store; compute runs under the lock.
        with self._lock:
            full = self.namespaced(key)
            if full in self._store:
                stored = self._store[full]
                return None if stored == NIL else stored
            value = compute()
            if value is None:
                if not skip_nil:
                    self._store[full] = NIL
                return None
            self._store[full] = str(value)
            return self._store[full]


# ── Registry and lookup ──────────────────────────────────────────────────────

_registry = Registry("cache store")
_registry.register("null", NullCacheStore)
_registry.register("memory", MemoryCacheStore)
_registry.register("sql", "experiment_sdk.tier2_reliability.cache_sql:SqlCacheStore")
_registry.register("redis_hash", "experiment_sdk.tier2_reliability.cache_redis:RedisHashCacheStore")


def register_cache_store(name: str, target: type | str) -> None:
    """Register a store class (or lazy ``"module:Class"`` path) under *name*."""
    if not isinstance(target, (type, str)):
        raise ConfigurationError(
            f"Unable to register cache store {name!r}: expected a class or 'module:Class' path",
            name=name,
        )
    _registry.register(name, target)


def registered_cache_stores() -> list[str]:
    return _registry.names()


def lookup_cache_store(store: Any = "null", **options: Any) -> CacheStore:
    """
    Resolve *store* to a cache store instance.

    Accepts a store instance, a store class, a registered name, or a dotted
    path (``"package.module:Class"``). Unknown names raise ConfigurationError.

    Usage:
        lookup_cache_store("memory", namespace="checkout")
    """
    if isinstance(store, str):
        name = store
        target: Any = _registry.get(name) if name in _registry else None
        if target is None:
            try:
                target = import_object(name)
            except (ImportError, AttributeError, ValueError):
                raise ConfigurationError(
                    f"No cache store found for {name!r}", name=name
                ) from None
        store = target

    if isinstance(store, type):
        store = store(**options)

    if not isinstance(store, CacheStore):
        raise ConfigurationError(
            f"{store!r} does not implement the cache store interface "
            "(read, write, delete, delete_matched, clear, length, fetch)",
        )
    return store


def _reset_registry() -> None:
    """Restore the built-in cache store names. For tests only."""
    for name in registered_cache_stores():
        if name not in ("null", "memory", "sql", "redis_hash"):
            _registry.unregister(name)


__all__ = [
    "NIL",
    "CacheStore",
    "BaseCacheStore",
    "NullCacheStore",
    "MemoryCacheStore",
    "register_cache_store",
    "registered_cache_stores",
    "lookup_cache_store",
]
