"""Trading calendar generation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, MutableMapping

default_weekend = frozenset({5, 6})


def normalize_market(market: str) -> str:
    """Normalize market identifiers for calendar lookups."""

    return market.strip().lower()


def _nth_weekday(year: int, month: int, weekday: int, nth: int) -> date:
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (nth - 1))


def _last_weekday(year: int, month: int, weekday: int) -> date:
    following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    last = following - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _easter_sunday(year: int) -> date:
    # Anonymous Gregorian algorithm.
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def _observed(holiday: date) -> date:
    if holiday.weekday() == 5:
        return holiday - timedelta(days=1)
    if holiday.weekday() == 6:
        return holiday + timedelta(days=1)
    return holiday


@lru_cache(maxsize=32)
def us_market_holidays(first_year: int, last_year: int) -> frozenset[date]:
    """Build the fixed set of US exchange holidays for a range of years."""

    holidays: set[date] = set()
    for year in range(first_year, last_year + 1):
        new_year = date(year, 1, 1)
        # A Saturday New Year is not observed on the preceding Friday.
        if new_year.weekday() != 5:
            holidays.add(_observed(new_year))
        holidays.add(_nth_weekday(year, 1, 0, 3))
        holidays.add(_nth_weekday(year, 2, 0, 3))
        holidays.add(_easter_sunday(year) - timedelta(days=2))
        holidays.add(_last_weekday(year, 5, 0))
        if year >= 2022:
            holidays.add(_observed(date(year, 6, 19)))
        holidays.add(_observed(date(year, 7, 4)))
        holidays.add(_nth_weekday(year, 9, 0, 1))
        holidays.add(_nth_weekday(year, 11, 3, 4))
        holidays.add(_observed(date(year, 12, 25)))
    return frozenset(day for day in holidays if first_year <= day.year <= last_year)


@dataclass(frozen=True)
class TradingCalendar:
    """Weekday mask plus holidays for one market.

    ``holidays`` is a fixed set; ``holiday_rule`` builds the holidays of a
    span of years on demand, so any window gets its holidays regardless of
    how far back it reaches.
    """

    market: str
    weekend_days: frozenset[int] = default_weekend
    holidays: frozenset[date] = frozenset()
    aliases: frozenset[str] = frozenset()
    holiday_rule: Callable[[int, int], frozenset[date]] | None = None

    def holidays_between(self, first_year: int, last_year: int) -> frozenset[date]:
        if self.holiday_rule is None:
            return self.holidays
        return self.holidays | self.holiday_rule(first_year, last_year)

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() not in self.weekend_days and day not in self.holidays_between(day.year, day.year)

    def trading_days(self, start: date, end: date) -> list[date]:
        """Return trading days between the bounds, both inclusive.

        A range with ``start`` after ``end`` is empty.
        """

        if start > end:
            return []
        holidays = self.holidays_between(start.year, end.year)
        days: list[date] = []
        current = start
        while current <= end:
            if current.weekday() not in self.weekend_days and current not in holidays:
                days.append(current)
            current += timedelta(days=1)
        return days

    def count_trading_days(self, start: date, end: date) -> int:
        return len(self.trading_days(start, end))


def builtin_calendars(years: Iterable[int] | None = None) -> Mapping[str, TradingCalendar]:
    """Construct the built-in calendars.

    With ``years`` the US holidays are fixed to that span; otherwise they are
    derived from the rules for whatever range is asked for.
    """

    aliases = frozenset({"us", "nyse", "nasdaq"})
    if years is None:
        us_calendar = TradingCalendar(market="us", aliases=aliases, holiday_rule=us_market_holidays)
    else:
        year_list = sorted(years)
        us_calendar = TradingCalendar(
            market="us",
            aliases=aliases,
            holidays=us_market_holidays(year_list[0], year_list[-1]) if year_list else frozenset(),
        )
    return {us_calendar.market: us_calendar}


class TradingCalendarProvider:
    """Provides trading calendars keyed by market identifiers."""

    def __init__(
        self,
        market_calendars: Mapping[str, TradingCalendar] | None = None,
        default_calendar: TradingCalendar | None = None,
    ) -> None:
        source = market_calendars or builtin_calendars()
        self._calendars: MutableMapping[str, TradingCalendar] = {}
        self._alias_map: MutableMapping[str, TradingCalendar] = {}
        for key, calendar in source.items():
            self._calendars[normalize_market(key)] = calendar
            for alias in calendar.aliases:
                self._alias_map[normalize_market(alias)] = calendar

        self._default_calendar = default_calendar or TradingCalendar(market="default")

    def get_calendar(self, market: str) -> TradingCalendar:
        """Return the matching calendar or fall back to the default."""

        key = normalize_market(market)
        if key in self._calendars:
            return self._calendars[key]
        if key in self._alias_map:
            return self._alias_map[key]
        return self._default_calendar

    def get_trading_days(self, market: str, start: date, end: date) -> list[date]:
        return self.get_calendar(market).trading_days(start, end)


def generate_calendar(start: date, end: date, holidays: Iterable[date] = ()) -> list[date]:
    """Ordered weekdays between ``start`` and ``end`` inclusive, minus ``holidays``."""

    return TradingCalendar(market="adhoc", holidays=frozenset(holidays)).trading_days(start, end)


__all__ = [
    "TradingCalendar",
    "TradingCalendarProvider",
    "builtin_calendars",
    "default_weekend",
    "generate_calendar",
    "normalize_market",
    "us_market_holidays",
]
