"""Injectable time source.

Accrual timing, carryover expiry and request validation all compare against
"now". Services read it through ``get_clock()`` so tests can pin the date.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Interface for the current-time source."""

    def now(self) -> datetime:
        """Return the current timezone-aware time."""
        ...

    def today(self) -> date:
        """Return the current date."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock pinned to a given instant; ``set`` moves it."""

    def __init__(self, current: date | datetime) -> None:
        self._current = self._coerce(current)

    @staticmethod
    def _coerce(value: date | datetime) -> datetime:
        if isinstance(value, datetime):
            return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return datetime(value.year, value.month, value.day, 12, 0, tzinfo=UTC)

    def set(self, current: date | datetime) -> None:
        self._current = self._coerce(current)

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.date()


_clock: Clock = SystemClock()


def get_clock() -> Clock:
    """Return the process-wide clock."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Override the clock (for testing or replays)."""
    global _clock
    _clock = clock
