from __future__ import annotations

from datetime import date

from gapsync.core.services import (
    TradingCalendar,
    TradingCalendarProvider,
    builtin_calendars,
    generate_calendar,
    us_market_holidays,
)


def test_us_holidays_for_2024() -> None:
    holidays = us_market_holidays(2024, 2024)

    assert sorted(holidays) == [
        date(2024, 1, 1),
        date(2024, 1, 15),
        date(2024, 2, 19),
        date(2024, 3, 29),
        date(2024, 5, 27),
        date(2024, 6, 19),
        date(2024, 7, 4),
        date(2024, 9, 2),
        date(2024, 11, 28),
        date(2024, 12, 25),
    ]


def test_weekend_holidays_are_observed_on_adjacent_weekday() -> None:
    holidays = us_market_holidays(2021, 2022)

    # Christmas 2021 fell on a Saturday, Independence Day 2021 on a Sunday.
    assert date(2021, 12, 24) in holidays
    assert date(2021, 7, 5) in holidays
    # New Year 2022 fell on a Saturday and is not observed.
    assert date(2021, 12, 31) not in holidays


def test_juneteenth_only_from_2022() -> None:
    assert date(2021, 6, 18) not in us_market_holidays(2021, 2021)
    assert date(2022, 6, 20) in us_market_holidays(2022, 2022)


def test_trading_days_skip_weekends_and_holidays(us_calendar: TradingCalendar) -> None:
    days = us_calendar.trading_days(date(2023, 12, 29), date(2024, 1, 3))

    assert days == [date(2023, 12, 29), date(2024, 1, 2), date(2024, 1, 3)]


def test_inverted_range_is_empty(us_calendar: TradingCalendar) -> None:
    assert us_calendar.trading_days(date(2024, 1, 10), date(2024, 1, 2)) == []
    assert us_calendar.count_trading_days(date(2024, 1, 10), date(2024, 1, 2)) == 0


def test_alias_lookup_returns_us_calendar() -> None:
    provider = TradingCalendarProvider()

    assert provider.get_calendar("NYSE").market == "us"
    assert provider.get_calendar(" nasdaq ").market == "us"


def test_unknown_market_falls_back_to_weekdays_only() -> None:
    provider = TradingCalendarProvider()

    days = provider.get_trading_days("unknown-market", date(2024, 1, 1), date(2024, 1, 7))

    assert days == [date(2024, 1, d) for d in range(1, 6)]


def test_generate_calendar_with_explicit_holidays() -> None:
    days = generate_calendar(date(2024, 1, 1), date(2024, 1, 5), holidays=[date(2024, 1, 3)])

    assert days == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 4), date(2024, 1, 5)]


def test_default_us_calendar_covers_windows_before_2000(us_calendar: TradingCalendar) -> None:
    days = us_calendar.trading_days(date(1995, 12, 22), date(1996, 1, 2))

    # Christmas 1995 and New Year 1996 both fell on a Monday.
    assert date(1995, 12, 25) not in days
    assert date(1996, 1, 1) not in days
    assert days == [
        date(1995, 12, 22),
        date(1995, 12, 26),
        date(1995, 12, 27),
        date(1995, 12, 28),
        date(1995, 12, 29),
        date(1996, 1, 2),
    ]
    assert not us_calendar.is_trading_day(date(1989, 7, 4))


def test_fixed_years_limit_builtin_holidays() -> None:
    calendar = builtin_calendars([2024])["us"]

    assert not calendar.is_trading_day(date(2024, 7, 4))
    assert calendar.is_trading_day(date(2023, 7, 4))
