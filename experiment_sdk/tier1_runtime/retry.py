"""
experiment_sdk.tier1_runtime.retry
───────────────────────────────────
Caller-side retry/backoff for transient storage faults. The store and engine
never retry internally; a transport wrapping them decorates its calls with
retry_policy() so StorageUnavailableError is retried with exponential
backoff plus jitter, and logical errors fail fast.

Usage:
    @retry_policy()
    async def pick_variant(name, participant_id):
        return await engine.assign(name, participant_id)
"""
from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from experiment_sdk.tier0_core.errors import StorageUnavailableError
from experiment_sdk.tier0_core.logging import get_logger

log = get_logger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "storage.retry",
        attempt=retry_state.attempt_number,
        error_code=getattr(exc, "code", type(exc).__name__),
    )


def retry_policy(
    max_attempts: int | None = None,
    min_wait: float | None = None,
    max_wait: float | None = None,
    jitter: float = 1.0,
    on: list[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter to an async callable.

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
        on:           Exception types to retry. Defaults to
                      StorageUnavailableError only.

    Unset limits fall back to the EXPERIMENT_RETRY_* settings.
    """
    from experiment_sdk.tier0_core.config import get_config

    config = get_config()
    attempts = max_attempts if max_attempts is not None else config.retry_max_attempts
    lo = min_wait if min_wait is not None else config.retry_min_wait
    hi = max_wait if max_wait is not None else config.retry_max_wait
    retry_on = tuple(on) if on else (StorageUnavailableError,)

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(min=lo, max=hi) + wait_random(0, jitter),
                retry=retry_if_exception(lambda exc: isinstance(exc, retry_on)),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    return await fn(*args, **kwargs)

        return wrapper
    return decorator


__all__ = ["retry_policy"]
