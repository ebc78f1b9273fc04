"""
experiment_sdk.tier3_platform.hashing
──────────────────────────────────────
Deterministic bucketing: (experiment_id, participant_id) -> r in [0, 1).

The experiment ID is part of the hash input, so one participant lands in
independent-looking buckets across experiments.
"""
from __future__ import annotations

import hashlib

from experiment_sdk.tier0_core.errors import ConfigurationError

# 53 bits: every value below 2**53 divides to a double strictly under 1.0.
_HASH_BITS = 53
_HASH_SPACE = 2 ** _HASH_BITS


class AssignmentHasher:
    """
    Pure hash of experiment and participant identity into [0, 1).

    Takes the first 8 bytes of the digest of "experiment_id:participant_id"
    as a big-endian unsigned int, keeps its top 53 bits and divides by 2**53.
    """

    def __init__(self, algorithm: str = "sha256") -> None:
        try:
            probe = hashlib.new(algorithm)
            digest_size = len(probe.digest())
        except (ValueError, TypeError) as exc:
            # TypeError: variable-length digests (shake_*) need a length.
            raise ConfigurationError(
                user_message=f"Unsupported hash algorithm {algorithm!r}.",
            ) from exc
        if digest_size < 8:
            raise ConfigurationError(
                user_message=f"Hash algorithm {algorithm!r} yields fewer than 8 bytes.",
            )
        self._algorithm = algorithm

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def hash(self, experiment_id: str, participant_id: str) -> float:
        h = hashlib.new(self._algorithm, f"{experiment_id}:{participant_id}".encode("utf-8"))
        return (int.from_bytes(h.digest()[:8], "big") >> (64 - _HASH_BITS)) / _HASH_SPACE

    def __repr__(self) -> str:
        return f"AssignmentHasher(algorithm={self._algorithm!r})"


__all__ = ["AssignmentHasher"]
