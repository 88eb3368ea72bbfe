"""Injectable clock so services never read wall-clock time directly."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current time for services, events and audit fields."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Controlled clock for tests and replays.

    Returns the same instant until ``advance()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = fixed_time or datetime(2025, 11, 1, 9, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def advance(self, seconds: float = 1) -> datetime:
        """Move the clock forward and return the new time."""
        self._time = self._time + timedelta(seconds=seconds)
        return self._time
