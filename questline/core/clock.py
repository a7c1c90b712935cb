"""
Injectable time source.

Everything in the engine that needs "now" (streak day boundaries, challenge
windows, finalization, reminder scans) reads it from a `Clock` so behaviour
can be driven deterministically in tests and recurring jobs.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Manually advanced clock.

    >>> clock = FixedClock(datetime(2025, 1, 6, 12, tzinfo=timezone.utc))
    >>> clock.advance(days=1)
    >>> clock.now().day
    7
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._now = value

    def advance(self, **delta: float) -> None:
        self._now = self._now + timedelta(**delta)
