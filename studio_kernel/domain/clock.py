"""
Injectable time source for the payroll engine.

Services take a ``Clock`` in their constructor instead of reading the
system time, so that review acknowledgements, cycle creation, outbox
delivery and the salary expense date can be pinned in tests.

Payroll business dates (the expense posting date) are local to the
studio, so ``today()`` resolves the current instant in a given zone.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo


class Clock(ABC):
    """Source of timezone-aware instants."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self, tz: tzinfo) -> date:
        """Calendar date of the current instant in ``tz``."""
        return self.now().astimezone(tz).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Repeated ``now()`` calls return the same instant until the clock is
    moved with ``advance()``, ``tick()`` or ``set_time()``.
    """

    def __init__(self, start: datetime | None = None):
        self._start = start or datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._start + self._offset

    def set_time(self, instant: datetime) -> None:
        self._start = instant
        self._offset = timedelta()

    def advance(self, seconds: int = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Move forward one second and return the new instant."""
        self.advance(1)
        return self.now()
