"""
experiment_sdk.tier0_core.errors
─────────────────────────────────
Error taxonomy for experiment management and assignment. Every error carries
a stable machine-readable code, a user-safe message and an HTTP-style status
so a front-end can map it without knowing the class hierarchy.

Logical errors (not found, duplicate name, bad distribution, lifecycle
violations) are never retried. StorageUnavailableError is the one transient
kind and is what tier1_runtime.retry backs off on.

Optional capture: EXPERIMENT_ERROR_BACKEND=sentry|otel|none
"""
from __future__ import annotations

from typing import Any

from experiment_sdk.tier0_core.config import get_config


# ── Base error ────────────────────────────────────────────────────────────────

class ExperimentError(Exception):
    """
    Base class for all experiment_sdk errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    - status_code: HTTP status code for API responses
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }
        if self.metadata:
            d["error"]["metadata"] = {k: str(v) for k, v in self.metadata.items()}
        return d


# ── Generic kinds ─────────────────────────────────────────────────────────────

class ValidationError(ExperimentError):
    """Input validation failure."""
    status_code = 422
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class NotFoundError(ExperimentError):
    """Unknown experiment ID or name."""
    status_code = 404
    code = "not_found"


class ConflictError(ExperimentError):
    """Write conflicts with the current state of a record."""
    status_code = 409
    code = "conflict"


class ConfigurationError(ExperimentError):
    """Misconfiguration detected at startup."""
    status_code = 500
    code = "configuration_error"


# ── Experiment-specific kinds ─────────────────────────────────────────────────

class DuplicateNameError(ConflictError):
    """An experiment with this name already exists."""
    code = "duplicate_name"


class InvalidDistributionError(ValidationError):
    """Variant weights are empty, negative, or do not sum to 1."""
    code = "invalid_distribution"


class AlreadyFinishedError(ConflictError):
    """finish() called on an experiment that already has a finish timestamp."""
    code = "already_finished"


class ExperimentFinishedError(ExperimentError):
    """The experiment is finished and no longer serves assignments or edits."""
    status_code = 410
    code = "experiment_finished"


class StorageUnavailableError(ExperimentError):
    """Transient storage fault (connection loss, timeout). Safe to retry."""
    status_code = 503
    code = "storage_unavailable"


# ── Error capture backend ─────────────────────────────────────────────────────

# Set by configure_sentry(); wins over the configured error_backend.
_backend_override: str | None = None


def _capture(error: ExperimentError) -> None:
    """Send error to configured backend. Called automatically by ExperimentError.__init__."""
    backend = (_backend_override or get_config().error_backend).lower()
    if backend == "none":
        return
    if backend == "sentry":
        _capture_sentry(error)
    elif backend == "otel":
        _capture_otel(error)


def _capture_sentry(error: ExperimentError) -> None:
    try:
        import sentry_sdk
    except ImportError:
        return
    if error.status_code >= 500:
        sentry_sdk.capture_exception(error)
    else:
        with sentry_sdk.new_scope() as scope:
            scope.set_extra("code", error.code)
            for key, value in error.metadata.items():
                scope.set_extra(key, value)
            sentry_sdk.capture_message(str(error), level="warning")


def _capture_otel(error: ExperimentError) -> None:
    try:
        from opentelemetry import trace
    except ImportError:
        return
    span = trace.get_current_span()
    span.record_exception(error)
    span.set_status(trace.StatusCode.ERROR, str(error))


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk
    global _backend_override
    sentry_sdk.init(dsn=dsn, **kwargs)
    _backend_override = "sentry"


__all__ = [
    "ExperimentError", "ValidationError", "NotFoundError", "ConflictError",
    "ConfigurationError", "DuplicateNameError", "InvalidDistributionError",
    "AlreadyFinishedError", "ExperimentFinishedError", "StorageUnavailableError",
    "configure_sentry",
]
