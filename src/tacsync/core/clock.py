"""Clock utilities.

Every component that compares timestamps takes a `clock` callable so tests
can drive intervals, backoff and round deadlines without sleeping.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ManualClock:
    """Settable clock for deterministic scheduling.

    Example:
        clock = ManualClock()
        coordinator = RoundCoordinator(factory, clock=clock)
        clock.advance(seconds=600)
        coordinator.tick()
    """

    def __init__(self, start: datetime | None = None):
        self._now = as_utc(start) if start else datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by timedelta keyword arguments."""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = as_utc(value)
