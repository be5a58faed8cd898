"""
experiment_sdk.tier1_runtime.serialize
────────────────────────────────────────
Stable serialized run record for reporting and telemetry collaborators.

Field set: experiment, run_id, run_key, variant ("" when unresolved), skipped.
"""
from __future__ import annotations

import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

T = TypeVar("T", bound=BaseModel)


class RunRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    experiment: str
    run_id: str
    run_key: str
    variant: str = ""
    skipped: bool = False

    @field_validator("variant", mode="before")
    @classmethod
    def _blank_when_unresolved(cls, v: Any) -> str:
        return "" if v is None else str(v)


def serialize(obj: BaseModel | dict | list) -> bytes:
    """
    Serialize a Pydantic model or dict to JSON bytes.

    Usage:
        data = serialize(experiment.to_record())   # → b'{"experiment": "...", ...}'
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump_json().encode()
    return json.dumps(obj, default=str).encode()


def deserialize(data: bytes | str, model: Type[T] = RunRecord) -> T:  # type: ignore[assignment]
    """
    Deserialize bytes/str into a Pydantic model.

    Usage:
        record = deserialize(raw_bytes)
    """
    if isinstance(data, bytes):
        data = data.decode()
    return model.model_validate_json(data)


def to_dict(obj: BaseModel) -> dict[str, Any]:
    """Convert a Pydantic model to a plain dict (for JSON responses)."""
    return obj.model_dump(mode="json")


__all__ = ["RunRecord", "serialize", "deserialize", "to_dict"]
