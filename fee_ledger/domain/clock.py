"""
Clock -- injectable time source.

Responsibility:
    Gives services and the orchestrator one place to ask for "now" and
    "today", so that due-date and overdue logic is deterministic in tests.

Architecture position:
    Kernel > Domain.  SystemClock is the one sanctioned I/O boundary for time.
    Pure domain functions never call ``datetime.now()`` or ``date.today()``;
    they take ``today`` as an argument.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Defaults to 2025-01-15 09:00 UTC.  Naive datetimes are rejected so
    ``today()`` can never depend on the host timezone.
    """

    def __init__(self, start: datetime | None = None):
        self._now = self._checked(start or datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc))

    @staticmethod
    def _checked(value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        return value

    def now(self) -> datetime:
        return self._now

    def set_time(self, value: datetime) -> None:
        self._now = self._checked(value)

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._now += timedelta(days=days)
