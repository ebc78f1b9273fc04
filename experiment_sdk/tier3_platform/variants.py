"""
experiment_sdk.tier3_platform.variants
───────────────────────────────────────
Experiment and variant value types, and VariantSet: the validated weight
distribution of one experiment, bucketed over [0, 1).

A VariantSet is immutable. Rebalancing produces a new set, so a reader
holding a set can never see weights that do not sum to 1.
"""
from __future__ import annotations

import bisect
import math
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from experiment_sdk.tier0_core.errors import InvalidDistributionError

DEFAULT_EPSILON = 1e-6


class VariantSet:
    """
    Ordered (variant_id, weight) pairs whose weights sum to 1.0 ± epsilon.

    Order is significant: variant i owns the interval [c(i-1), c(i)) of the
    cumulative weights, so callers must supply a stable order (stores use
    creation position). Zero-weight variants own an empty interval.
    """

    __slots__ = ("_ids", "_weights", "_bounds", "_last_live", "_epsilon")

    def __init__(
        self,
        pairs: Sequence[tuple[str, float]],
        *,
        epsilon: float = DEFAULT_EPSILON,
    ) -> None:
        if not pairs:
            raise InvalidDistributionError(
                user_message="An experiment needs at least one variant.",
                detail="variant set is empty",
            )

        ids: list[str] = []
        weights: list[float] = []
        for variant_id, weight in pairs:
            weight = float(weight)
            if not math.isfinite(weight) or weight < 0.0:
                raise InvalidDistributionError(
                    user_message="Variant weights must be non-negative numbers.",
                    detail=f"variant {variant_id!r} has weight {weight!r}",
                    variant_id=variant_id,
                )
            ids.append(variant_id)
            weights.append(weight)

        if len(set(ids)) != len(ids):
            raise InvalidDistributionError(
                user_message="Variant IDs must be unique within an experiment.",
                detail=f"duplicate variant ids in {ids!r}",
            )

        total = math.fsum(weights)
        if abs(total - 1.0) > epsilon:
            raise InvalidDistributionError(
                user_message="Variant weights must sum to 1.",
                detail=f"weights sum to {total!r}, allowed deviation {epsilon!r}",
                total=total,
            )

        # Normalize so the last boundary is exactly 1.0; the residual inside
        # epsilon would otherwise leave a sliver of [0, 1) unowned.
        bounds: list[float] = []
        running = 0.0
        for w in weights:
            running += w
            bounds.append(running / total)

        self._ids = tuple(ids)
        self._weights = tuple(weights)
        self._bounds = tuple(bounds)
        self._last_live = max(i for i, w in enumerate(weights) if w > 0.0)
        self._epsilon = epsilon

    @property
    def variant_ids(self) -> tuple[str, ...]:
        return self._ids

    @property
    def weights(self) -> tuple[float, ...]:
        return self._weights

    @property
    def epsilon(self) -> float:
        return self._epsilon

    def weight_of(self, variant_id: str) -> float:
        return self._weights[self._ids.index(variant_id)]

    def lookup(self, r: float) -> str:
        """Return the variant whose cumulative interval contains r ∈ [0, 1)."""
        if not 0.0 <= r < 1.0:
            raise ValueError(f"bucket value must be in [0, 1), got {r!r}")
        idx = bisect.bisect_right(self._bounds, r)
        return self._ids[min(idx, self._last_live)]

    def rebalanced(self, weights: Mapping[str, float]) -> "VariantSet":
        """
        Return a new set with every weight replaced. *weights* must name
        exactly this set's variants; order is kept.
        """
        missing = set(self._ids) - set(weights)
        unknown = set(weights) - set(self._ids)
        if missing or unknown:
            raise InvalidDistributionError(
                user_message="Rebalancing must assign a weight to every variant of the experiment.",
                detail=f"missing={sorted(missing)!r} unknown={sorted(unknown)!r}",
            )
        return VariantSet(
            [(variant_id, weights[variant_id]) for variant_id in self._ids],
            epsilon=self._epsilon,
        )

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[tuple[str, float]]:
        return iter(zip(self._ids, self._weights))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VariantSet):
            return NotImplemented
        return self._ids == other._ids and self._weights == other._weights

    def __hash__(self) -> int:
        return hash((self._ids, self._weights))

    def __repr__(self) -> str:
        inner = ", ".join(f"{i}={w:g}" for i, w in self)
        return f"VariantSet({inner})"


@dataclass(frozen=True)
class Variant:
    id: str
    experiment_id: str
    data: bytes  # opaque; owned by the caller, never interpreted
    weight: float
    position: int


@dataclass(frozen=True)
class Experiment:
    id: str
    name: str
    created_at: datetime
    finished_at: datetime | None
    variants: tuple[Variant, ...]

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    def variant_set(self, epsilon: float = DEFAULT_EPSILON) -> VariantSet:
        ordered = sorted(self.variants, key=lambda v: (v.position, v.id))
        return VariantSet([(v.id, v.weight) for v in ordered], epsilon=epsilon)

    def variant(self, variant_id: str) -> Variant:
        for v in self.variants:
            if v.id == variant_id:
                return v
        raise KeyError(variant_id)


@dataclass(frozen=True)
class Assignment:
    """Result of bucketing one participant into one experiment."""
    experiment_id: str
    experiment_name: str
    participant_id: str
    variant_id: str
    data: bytes
    bucket: float


__all__ = ["DEFAULT_EPSILON", "VariantSet", "Variant", "Experiment", "Assignment"]
