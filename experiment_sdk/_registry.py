"""
experiment_sdk._registry
──────────────────────────
Internal name registry shared by rollouts and cache stores.

A name maps either to a class or to a lazy ``"package.module:ClassName"``
reference that is imported on first lookup, so adapters with optional
dependencies (SQLAlchemy, redis) are only imported when actually used.
"""
from __future__ import annotations

import importlib
import threading
from typing import Any


def import_object(path: str) -> Any:
    """
    Import ``"package.module:attr"`` or ``"package.module.attr"``.

    Raises ImportError / AttributeError when the target does not exist.
    """
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ImportError(f"{path!r} is not a 'module:attr' or 'module.attr' path")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part)
    return target


class Registry:
    """Thread-safe name → class (or lazy reference) mapping."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._entries: dict[str, type | str] = {}
        self._lock = threading.Lock()

    def register(self, name: str, target: type | str) -> None:
        with self._lock:
            self._entries[str(name)] = target

    def unregister(self, name: str) -> None:
        with self._lock:
            self._entries.pop(str(name), None)

    def __contains__(self, name: object) -> bool:
        return str(name) in self._entries

    def names(self) -> list[str]:
        return list(self._entries)

    def get(self, name: str) -> type | None:
        """Return the class registered under *name*, importing lazy references."""
        target = self._entries.get(str(name))
        if isinstance(target, str):
            target = import_object(target)
            with self._lock:
                self._entries[str(name)] = target
        return target


__all__ = ["Registry", "import_object"]
