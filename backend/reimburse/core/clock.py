"""Injectable clock.

Delegation windows, overdue detection and settlement deadlines all compare
against "now". Services take a ``Clock`` so those checks are deterministic
under test; rule functions take ``now`` as a plain argument.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware time."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant until moved explicitly."""

    def __init__(self, fixed: datetime | None = None) -> None:
        self._now = fixed or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


system_clock = SystemClock()
