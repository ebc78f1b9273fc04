"""
experiment_sdk.tier1_runtime.clock
───────────────────────────────────
Mockable UTC time source. Stores stamp created_at / finished_at through a
Clock they are given, so tests can pin timestamps without patching datetime.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable


class Clock:
    """UTC clock. Pass now_fn to control time in tests."""

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def freeze(self, dt: datetime) -> "Clock":
        """Return a new Clock frozen at the given datetime."""
        return Clock(now_fn=lambda: dt)

    def advance(self, seconds: float) -> "Clock":
        """Return a new Clock advanced by *seconds* from current time."""
        base = self.now()
        return Clock(now_fn=lambda: base + timedelta(seconds=seconds))


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from databases that drop tzinfo."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = ["Clock", "as_utc"]
