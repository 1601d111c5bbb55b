"""Time providers.

Every component that needs "now" receives a clock instead of reading the
wall clock, so tests can pin the current date.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def today(self) -> date:
        return self.now().date()


@dataclass
class FixedClock:
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    current: datetime

    @classmethod
    def on(cls, day: date) -> "FixedClock":
        """Clock pinned to noon UTC on ``day``."""
        return cls(datetime(day.year, day.month, day.day, 12, 0, tzinfo=UTC))

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, days: int = 0, **kwargs: float) -> None:
        self.current = self.current + timedelta(days=days, **kwargs)
