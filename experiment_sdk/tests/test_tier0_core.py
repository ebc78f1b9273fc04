"""Tests for tier0_core modules."""
from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from experiment_sdk.tier0_core.config import ExperimentConfig, get_config
from experiment_sdk.tier0_core.errors import (
    AlreadyFinishedError,
    ConflictError,
    DuplicateNameError,
    ExperimentError,
    ExperimentFinishedError,
    InvalidDistributionError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from experiment_sdk.tier0_core.ids import new_id, new_uuid4, new_uuid7
from experiment_sdk.tier0_core.logging import _REDACTED, _redact_processor, get_logger


# ── errors ─────────────────────────────────────────────────────────────────

class TestErrors:
    def test_error_has_code_and_message(self):
        e = ExperimentError("custom_code", user_message="Something broke")
        assert e.code == "custom_code"
        assert "Something broke" in str(e)

    @pytest.mark.parametrize(
        "cls, code, status",
        [
            (NotFoundError, "not_found", 404),
            (DuplicateNameError, "duplicate_name", 409),
            (InvalidDistributionError, "invalid_distribution", 422),
            (AlreadyFinishedError, "already_finished", 409),
            (ExperimentFinishedError, "experiment_finished", 410),
            (StorageUnavailableError, "storage_unavailable", 503),
        ],
    )
    def test_taxonomy_codes(self, cls, code, status):
        e = cls(user_message="x")
        assert e.code == code
        assert e.status_code == status
        assert isinstance(e, ExperimentError)

    def test_conflict_kinds_share_a_base(self):
        assert issubclass(DuplicateNameError, ConflictError)
        assert issubclass(AlreadyFinishedError, ConflictError)

    def test_invalid_distribution_is_a_validation_error(self):
        e = InvalidDistributionError(user_message="bad", fields={"weights": "sum 0.9"})
        assert isinstance(e, ValidationError)
        assert e.to_dict()["error"]["fields"] == {"weights": "sum 0.9"}

    def test_to_dict_hides_detail(self):
        e = NotFoundError(user_message="Experiment 'a' does not exist.", detail="row missing", experiment_name="a")
        d = e.to_dict()
        assert d["error"]["code"] == "not_found"
        assert d["error"]["message"] == "Experiment 'a' does not exist."
        assert d["error"]["metadata"] == {"experiment_name": "a"}
        assert "row missing" not in str(d)


# ── config ─────────────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("EXPERIMENT_STORE_BACKEND", raising=False)
        config = ExperimentConfig(_env_file=None)
        assert config.store_backend == "sql"
        assert config.distribution_epsilon == pytest.approx(1e-6)
        assert config.hash_algorithm == "sha256"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("EXPERIMENT_STORE_BACKEND", "MEMORY")
        monkeypatch.setenv("EXPERIMENT_DISTRIBUTION_EPSILON", "0.001")
        config = ExperimentConfig(_env_file=None)
        assert config.store_backend == "memory"
        assert config.distribution_epsilon == pytest.approx(0.001)

    def test_rejects_unknown_backend(self):
        with pytest.raises(PydanticValidationError):
            ExperimentConfig(_env_file=None, store_backend="redis")

    def test_rejects_bad_epsilon(self):
        with pytest.raises(PydanticValidationError):
            ExperimentConfig(_env_file=None, distribution_epsilon=0)

    def test_rejects_unknown_hash(self):
        with pytest.raises(PydanticValidationError):
            ExperimentConfig(_env_file=None, hash_algorithm="not-a-hash")

    def test_get_config_is_cached(self):
        assert get_config() is get_config()
        assert get_config().is_test


# ── ids ────────────────────────────────────────────────────────────────────

class TestIds:
    def test_uuid4_format(self):
        uid = new_uuid4()
        assert len(uid) == 36
        assert uid.count("-") == 4

    def test_uuid7_is_time_ordered(self):
        ids = [new_uuid7() for _ in range(50)]
        assert ids == sorted(ids)

    def test_new_id_defaults_to_uuid7(self):
        assert new_id()[14] == "7"

    def test_new_id_invalid_kind(self):
        with pytest.raises(ValueError, match="Unknown ID kind"):
            new_id("invalid")  # type: ignore


# ── logging ────────────────────────────────────────────────────────────────

class TestLogging:
    def test_payload_fields_are_redacted(self):
        event = {"event": "experiment.created", "data": b"secret-flag", "experiment_id": "e1"}
        out = _redact_processor(None, "info", event)
        assert out["data"] == _REDACTED
        assert out["experiment_id"] == "e1"

    def test_database_url_is_redacted(self):
        out = _redact_processor(None, "info", {"DATABASE_URL": "postgresql://u:p@h/db"})
        assert out["DATABASE_URL"] == _REDACTED

    def test_raw_bytes_are_logged_as_length(self):
        out = _redact_processor(None, "info", {"variant": b"\x00\x01\x02"})
        assert out["variant"] == "<3 bytes>"

    def test_get_logger_returns_usable_logger(self):
        log = get_logger("experiment_sdk.tests")
        log.info("test.event", experiment_id="e1")


# ── metrics ────────────────────────────────────────────────────────────────

class TestMetrics:
    def test_counter_is_shared_by_name(self):
        from prometheus_client import REGISTRY

        from experiment_sdk.tier0_core.metrics import _default_label_values, counter

        first = counter("sdk_test_events_total", "Test events", ["kind"])
        second = counter("sdk_test_events_total", "Test events", ["kind"])
        before = REGISTRY.get_sample_value(
            "sdk_test_events_total", {**_default_label_values(), "kind": "a"}
        ) or 0.0
        first(kind="a").inc()
        second(kind="a").inc()
        after = REGISTRY.get_sample_value(
            "sdk_test_events_total", {**_default_label_values(), "kind": "a"}
        )
        assert after - before == 2

    def test_metrics_server_uses_configured_port(self, monkeypatch):
        from experiment_sdk.tier0_core import metrics

        ports = []
        monkeypatch.setenv("EXPERIMENT_METRICS_PORT", "9123")
        monkeypatch.setattr(metrics, "start_http_server", ports.append)
        metrics.start_metrics_server()
        metrics.start_metrics_server(9200)
        assert ports == [9123, 9200]


# ── settings shared by logging / errors / metrics ──────────────────────────

class TestConfiguredAmbient:
    def test_configure_logging_reads_config(self, monkeypatch):
        import logging

        from experiment_sdk.tier0_core.logging import configure_logging

        monkeypatch.setenv("EXPERIMENT_LOG_LEVEL", "ERROR")
        try:
            configure_logging()
            assert logging.getLogger("experiment_sdk").level == logging.ERROR
        finally:
            configure_logging(level="WARNING")

    def test_error_backend_comes_from_config(self, monkeypatch):
        from experiment_sdk.tier0_core import errors

        captured = []
        monkeypatch.setattr(errors, "_capture_otel", captured.append)
        monkeypatch.setenv("EXPERIMENT_ERROR_BACKEND", "otel")
        err = NotFoundError(user_message="missing")
        assert captured == [err]

    def test_error_backend_none_captures_nothing(self, monkeypatch):
        from experiment_sdk.tier0_core import errors

        captured = []
        monkeypatch.setattr(errors, "_capture_otel", captured.append)
        monkeypatch.setattr(errors, "_capture_sentry", captured.append)
        NotFoundError(user_message="missing")
        assert captured == []

    def test_logs_and_metrics_share_service_name(self, monkeypatch):
        from experiment_sdk.tier0_core.logging import _service_processor
        from experiment_sdk.tier0_core.metrics import _default_label_values

        monkeypatch.setenv("APP_NAME", "checkout")
        config = get_config()
        event = _service_processor(config.app_name, config.environment)(None, "info", {})
        assert event["service"] == _default_label_values()["service"] == "checkout"
        assert event["env"] == _default_label_values()["env"] == "test"
