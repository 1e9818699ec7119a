"""
Clock -- injectable time source.

Services never call ``datetime.now()`` themselves; they are handed a Clock.
Acceptance dates, deliverable expiry, invoice due dates and dispatch
backoff all read from it, so tests drive them with ``DeterministicClock``.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Returns the same instant until moved with ``advance()``, so retry
    schedules can be stepped through one backoff interval at a time.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
