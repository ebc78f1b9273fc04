"""Tests for tier1_runtime modules."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from experiment_sdk.tier0_core.errors import (
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from experiment_sdk.tier1_runtime.clock import Clock, as_utc
from experiment_sdk.tier1_runtime.retry import retry_policy
from experiment_sdk.tier1_runtime.serialize import decode_payload, encode_payload
from experiment_sdk.tier1_runtime.validate import (
    VariantSpec,
    parse_create_request,
    require_participant_id,
)


# ── clock ──────────────────────────────────────────────────────────────────

class TestClock:
    def test_now_returns_utc_datetime(self):
        assert Clock().now().tzinfo is not None

    def test_frozen_clock(self):
        fixed = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert Clock().freeze(fixed).now() == fixed

    def test_advance(self):
        fixed = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock = Clock().freeze(fixed).advance(90)
        assert clock.now() == fixed + timedelta(seconds=90)

    def test_as_utc_attaches_timezone_to_naive(self):
        naive = datetime(2025, 3, 1, 8, 30)
        assert as_utc(naive) == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


# ── validate ───────────────────────────────────────────────────────────────

class TestValidate:
    def test_accepts_tuples_dicts_and_specs(self):
        req = parse_create_request(
            "exp",
            [(b"a", 0.2), {"data": "b", "weight": 0.3}, VariantSpec(data=b"c", weight=0.5)],
        )
        assert [v.data for v in req.variants] == [b"a", b"b", b"c"]
        assert [v.weight for v in req.variants] == [0.2, 0.3, 0.5]

    def test_name_is_trimmed(self):
        req = parse_create_request("  pricing  ", [(b"a", 1.0)])
        assert req.name == "pricing"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError) as info:
            parse_create_request("   ", [(b"a", 1.0)])
        assert "name" in info.value.fields

    def test_malformed_tuple_rejected(self):
        with pytest.raises(ValidationError):
            parse_create_request("exp", [(b"a", 0.5, "extra")])

    def test_non_numeric_weight_rejected(self):
        with pytest.raises(ValidationError):
            parse_create_request("exp", [(b"a", "heavy")])

    def test_empty_variant_list_passes_shape_check(self):
        # The distribution check, not the shape check, rejects empty sets.
        req = parse_create_request("exp", [])
        assert req.variants == []

    @pytest.mark.parametrize("pid", ["", "   "])
    def test_blank_participant_rejected(self, pid):
        with pytest.raises(ValidationError):
            require_participant_id(pid)

    def test_participant_passes_through(self):
        assert require_participant_id("user-42") == "user-42"


# ── serialize ──────────────────────────────────────────────────────────────

class TestSerialize:
    def test_encode_dict_is_canonical(self):
        assert encode_payload({"b": 1, "a": True}) == b'{"a":true,"b":1}'

    def test_decode_into_model(self):
        class Treatment(BaseModel):
            color: str
            discount: float

        data = encode_payload(Treatment(color="green", discount=0.1))
        decoded = decode_payload(data, Treatment)
        assert decoded == Treatment(color="green", discount=0.1)

    def test_decode_plain(self):
        assert decode_payload(b'{"flag": "on"}') == {"flag": "on"}

    def test_unsupported_format(self):
        with pytest.raises(ValueError, match="Unsupported"):
            encode_payload({"a": 1}, format="protobuf")


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_storage_unavailable(self):
        calls = {"n": 0}

        @retry_policy(max_attempts=3, min_wait=0, max_wait=0, jitter=0)
        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise StorageUnavailableError(user_message="db down")
            return "ok"

        assert await flaky() == "ok"
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = {"n": 0}

        @retry_policy(max_attempts=2, min_wait=0, max_wait=0, jitter=0)
        async def down():
            calls["n"] += 1
            raise StorageUnavailableError(user_message="db down")

        with pytest.raises(StorageUnavailableError):
            await down()
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_logical_errors_are_not_retried(self):
        calls = {"n": 0}

        @retry_policy(max_attempts=5, min_wait=0, max_wait=0, jitter=0)
        async def missing():
            calls["n"] += 1
            raise NotFoundError(user_message="no such experiment")

        with pytest.raises(NotFoundError):
            await missing()
        assert calls["n"] == 1
