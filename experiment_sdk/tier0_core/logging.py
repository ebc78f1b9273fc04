"""
experiment_sdk.tier0_core.logging
──────────────────────────────────
Structured logs for store writes and assignment decisions. Context bound with
bind_context() (e.g. a request_id from the calling transport) is merged into
every record, and every record carries the service and environment names.

Variant payloads are opaque caller data: payload keys are redacted and any
raw bytes value is logged as its length only.

Stack: structlog over stdlib logging, JSON or console rendering to stdout.
Configure via: EXPERIMENT_LOG_LEVEL, EXPERIMENT_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from experiment_sdk.tier0_core.config import get_config

_SDK_LOGGER = "experiment_sdk"


# ── Processors ────────────────────────────────────────────────────────────────

_REDACT_KEYS = frozenset({
    "password", "secret", "token", "api_key", "authorization",
    "database_url", "dsn", "data", "payload",
})

_REDACTED = "[REDACTED]"


def _redact_processor(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """Strip sensitive fields and raw payload bytes from log records."""
    for key, value in list(event_dict.items()):
        if key.lower() in _REDACT_KEYS:
            event_dict[key] = _REDACTED
        elif isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[key] = f"<{len(value)} bytes>"
    return event_dict


def _service_processor(service: str, env: str):
    def add_service(logger: Any, method: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("env", env)
        return event_dict
    return add_service


# ── Configuration ─────────────────────────────────────────────────────────────

_configured = False


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    (Re)configure structlog and the "experiment_sdk" stdlib logger.

    Arguments override the configured log_level / log_format. Called lazily
    by get_logger(); call it directly to change settings at runtime.
    """
    global _configured
    config = get_config()
    level_name = (level or config.log_level).upper()
    log_format = (fmt or config.log_format).lower()
    numeric_level = getattr(logging, level_name, logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_processor(config.app_name, config.environment),
        _redact_processor,
    ]

    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer(sort_keys=True)
    )

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    sdk_logger = logging.getLogger(_SDK_LOGGER)
    for old in list(sdk_logger.handlers):
        sdk_logger.removeHandler(old)
    sdk_logger.addHandler(handler)
    sdk_logger.setLevel(numeric_level)
    sdk_logger.propagate = False
    _configured = True


# ── Public API ────────────────────────────────────────────────────────────────

def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

    Usage:
        log = get_logger(__name__)
        log.info("experiment.created", experiment_id="...", variants=2)
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name or _SDK_LOGGER)


def bind_context(**kwargs: Any) -> None:
    """Bind key-value pairs to every subsequent log call in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = ["configure_logging", "get_logger", "bind_context", "clear_context"]
