"""
experiment_sdk.tier1_runtime.serialize
───────────────────────────────────────
Caller-side helpers for variant payloads. The store and engine treat a
variant's data as opaque bytes and never call into this module; it exists
for the feature-flag or config systems that own the payload's structure.

Formats: json
"""
from __future__ import annotations

import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


def encode_payload(obj: BaseModel | dict | list | str, format: str = "json") -> bytes:
    """
    Encode a payload to bytes for use as variant data.

    Usage:
        data = encode_payload({"button_color": "green"})
        data = encode_payload(PricingTreatment(discount=0.1))
    """
    if format.lower() != "json":
        raise ValueError(f"Unsupported payload format: {format!r}. Supported: json")
    if isinstance(obj, BaseModel):
        return obj.model_dump_json().encode()
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode()


def decode_payload(data: bytes | str, model: Type[T] | None = None, format: str = "json") -> Any:
    """
    Decode variant data. With *model*, validate into that pydantic model;
    otherwise return the plain JSON value.
    """
    if format.lower() != "json":
        raise ValueError(f"Unsupported payload format: {format!r}. Supported: json")
    if model is not None:
        return model.model_validate_json(data)
    if isinstance(data, bytes):
        data = data.decode()
    return json.loads(data)


__all__ = ["encode_payload", "decode_payload"]
