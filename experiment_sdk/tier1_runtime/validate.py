"""
experiment_sdk.tier1_runtime.validate
──────────────────────────────────────
Input validation via Pydantic v2. Raises experiment_sdk ValidationError
(not raw Pydantic errors) so callers always see the same taxonomy.

Shape checks live here; distribution checks (negative weights, sum to 1)
belong to VariantSet and surface as InvalidDistributionError.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from experiment_sdk.tier0_core.errors import ValidationError

T = TypeVar("T", bound=BaseModel)


class VariantSpec(BaseModel):
    """One variant as supplied to create(): opaque payload plus weight."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    weight: float


class CreateExperimentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    variants: list[VariantSpec]

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        trimmed = v.strip()
        if not trimmed:
            raise ValueError("experiment name cannot be empty")
        return trimmed


VariantInput = Union[VariantSpec, tuple, dict]


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model.
    Raises experiment_sdk ValidationError (not Pydantic's) on failure.
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ValidationError(
            user_message="Request validation failed.",
            fields=fields,
        ) from exc


def parse_create_request(name: str, variants: Sequence[VariantInput]) -> CreateExperimentRequest:
    """
    Normalize create() arguments. Variants may be VariantSpec instances,
    (data, weight) tuples, or {"data": ..., "weight": ...} dicts.
    """
    raw: list[Any] = []
    for v in variants:
        if isinstance(v, tuple):
            if len(v) != 2:
                raise ValidationError(
                    user_message="Variant tuples must be (data, weight).",
                    fields={"variants": f"expected 2 items, got {len(v)}"},
                )
            raw.append({"data": v[0], "weight": v[1]})
        else:
            raw.append(v)
    return validate_input(CreateExperimentRequest, {"name": name, "variants": raw})


def require_participant_id(participant_id: str) -> str:
    """Reject blank participant IDs; they would all hash to one bucket."""
    if not isinstance(participant_id, str) or not participant_id.strip():
        raise ValidationError(
            user_message="Participant ID cannot be empty.",
            fields={"participant_id": "must be a non-empty string"},
        )
    return participant_id


__all__ = [
    "VariantSpec", "CreateExperimentRequest", "VariantInput",
    "validate_input", "parse_create_request", "require_participant_id",
]
