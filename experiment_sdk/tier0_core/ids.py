"""
experiment_sdk.tier0_core.ids
──────────────────────────────
Random ids for experiment runs and units of work. They only correlate log
lines and run records; the run key never depends on them.
"""
from __future__ import annotations

import uuid


def new_uuid4() -> str:
    return str(uuid.uuid4())


__all__ = ["new_uuid4"]
