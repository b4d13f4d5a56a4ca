"""Exchange trading calendar utilities."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from marketcharts.core.config import US_MARKET_HOLIDAYS

DEFAULT_WEEKEND = frozenset({5, 6})


@dataclass(frozen=True)
class DateGap:
    """Inclusive range of consecutive trading days with no cached record."""

    start: date
    end: date


@dataclass(frozen=True)
class TradingCalendar:
    """Weekend days plus a fixed holiday set."""

    weekend_days: frozenset[int] = DEFAULT_WEEKEND
    holidays: frozenset[date] = field(default_factory=lambda: frozenset(US_MARKET_HOLIDAYS))

    @classmethod
    def from_holidays(cls, holidays: Iterable[date]) -> TradingCalendar:
        return cls(holidays=frozenset(holidays))

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() not in self.weekend_days and day not in self.holidays

    def trading_days(self, start: date, end: date) -> list[date]:
        """Return trading days between the provided bounds inclusive."""

        if end < start:
            raise ValueError("end must be on or after start")

        current = start
        days: list[date] = []
        while current <= end:
            if self.is_trading_day(current):
                days.append(current)
            current += timedelta(days=1)
        return days

    def previous_trading_day(self, day: date) -> date:
        current = day - timedelta(days=1)
        while not self.is_trading_day(current):
            current -= timedelta(days=1)
        return current

    def find_missing_ranges(self, start: date, end: date, present: Iterable[date]) -> list[DateGap]:
        """Group trading days absent from ``present`` into maximal runs.

        Runs are split only by trading days that are present; weekends and
        holidays between two missing days do not break a run.
        """

        if end < start:
            return []
        have = set(present)
        gaps: list[DateGap] = []
        run_start: date | None = None
        run_end: date | None = None
        for day in self.trading_days(start, end):
            if day in have:
                if run_start is not None and run_end is not None:
                    gaps.append(DateGap(run_start, run_end))
                run_start = run_end = None
                continue
            if run_start is None:
                run_start = day
            run_end = day
        if run_start is not None and run_end is not None:
            gaps.append(DateGap(run_start, run_end))
        return gaps


__all__ = ["DEFAULT_WEEKEND", "DateGap", "TradingCalendar"]
