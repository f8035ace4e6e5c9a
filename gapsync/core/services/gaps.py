"""Gap detection over persisted daily records."""

from __future__ import annotations

import asyncio
import calendar as _calendar
from collections.abc import Callable, Iterable, Sequence
from datetime import date, timedelta
from typing import TYPE_CHECKING

from gapsync.core.logging import get_logger
from gapsync.core.models import (
    BackwardGap,
    GapAnalysis,
    GapPeriod,
    GlobalGapStats,
    RecentGapCheck,
)
from gapsync.core.services.calendars import TradingCalendar, TradingCalendarProvider

if TYPE_CHECKING:
    from gapsync.core.interfaces import RecordStore
    from gapsync.core.models import DataRecord

logger = get_logger(__name__)

DEFAULT_EMPTY_SYMBOL_WEIGHT = 2.0


def subtract_years(day: date, years: int) -> date:
    """Shift ``day`` back by whole years, clamping Feb 29 to Feb 28."""

    year = day.year - years
    last_day = _calendar.monthrange(year, day.month)[1]
    return day.replace(year=year, day=min(day.day, last_day))


def sweep_gaps(calendar_days: Sequence[date], present: Iterable[date]) -> tuple[list[GapPeriod], int]:
    """Walk the calendar in order and collect maximal runs of absent days.

    Returns the gap periods sorted longest first (ties keep chronological
    order) and the total number of missing days. Day counts include both
    endpoints for interior and trailing gaps alike.
    """

    present_days = set(present)
    gaps: list[GapPeriod] = []
    gap_start: date | None = None
    last_missing: date | None = None
    run_length = 0
    total_missing = 0

    for day in calendar_days:
        if day not in present_days:
            total_missing += 1
            if gap_start is None:
                gap_start = day
                run_length = 0
            run_length += 1
            last_missing = day
        elif gap_start is not None and last_missing is not None:
            gaps.append(GapPeriod(start_date=gap_start, end_date=last_missing, day_count=run_length))
            gap_start = None

    if gap_start is not None:
        gaps.append(GapPeriod(start_date=gap_start, end_date=calendar_days[-1], day_count=run_length))

    gaps.sort(key=lambda gap: gap.day_count, reverse=True)
    return gaps, total_missing


def _completion(persisted: int, expected: int) -> float:
    if expected == 0:
        return 100.0
    return persisted / expected * 100


class GapDetector:
    """Finds the trading days missing from the record store for a symbol."""

    def __init__(
        self,
        store: RecordStore,
        calendar: TradingCalendar | None = None,
        *,
        empty_symbol_weight: float = DEFAULT_EMPTY_SYMBOL_WEIGHT,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._store = store
        self._calendar = calendar or TradingCalendarProvider().get_calendar("us")
        self._empty_symbol_weight = empty_symbol_weight
        self._today = today or date.today

    @property
    def calendar(self) -> TradingCalendar:
        return self._calendar

    def target_window(self, target_years: int) -> tuple[date, date]:
        """Return ``[today - target_years, yesterday]``.

        The current day is excluded because its session may not have closed.
        """

        today = self._today()
        return subtract_years(today, target_years), today - timedelta(days=1)

    async def analyze_gaps(self, symbol: str, target_years: int = 5) -> GapAnalysis:
        """Diff the trading calendar against persisted records for ``symbol``."""

        window_start, window_end = self.target_window(target_years)
        records = await self._store.read_records(symbol, window_start, window_end)
        expected = self._calendar.trading_days(window_start, window_end)
        expected_set = set(expected)
        persisted = {record.date for record in records} & expected_set

        if not persisted:
            gap_periods: tuple[GapPeriod, ...] = ()
            if expected:
                gap_periods = (GapPeriod(start_date=window_start, end_date=window_end, day_count=len(expected)),)
            analysis = GapAnalysis(
                symbol=symbol,
                window_start=window_start,
                window_end=window_end,
                total_trading_days=len(expected),
                persisted_days=0,
                missing_days=len(expected),
                gap_periods=gap_periods,
                completion_percentage=_completion(0, len(expected)),
                priority_weight=self._empty_symbol_weight,
            )
        else:
            gaps, missing = sweep_gaps(expected, persisted)
            analysis = GapAnalysis(
                symbol=symbol,
                window_start=window_start,
                window_end=window_end,
                total_trading_days=len(expected),
                persisted_days=len(persisted),
                missing_days=missing,
                gap_periods=tuple(gaps),
                completion_percentage=_completion(len(persisted), len(expected)),
                first_persisted_date=min(persisted),
                last_persisted_date=max(persisted),
            )

        logger.info(
            f"{symbol}: {analysis.completion_percentage:.1f}% complete over "
            f"{window_start.isoformat()} -> {window_end.isoformat()}, "
            f"{analysis.missing_days} missing days in {len(analysis.gap_periods)} gaps"
        )
        return analysis

    async def check_recent_gaps(self, symbol: str, days: int = 7) -> RecentGapCheck:
        """Count missing trading days over ``[today - days, yesterday]``."""

        today = self._today()
        start, end = today - timedelta(days=days), today - timedelta(days=1)
        records = await self._store.read_records(symbol, start, end)
        expected = self._calendar.trading_days(start, end)
        actual = len({record.date for record in records} & set(expected))
        missing = len(expected) - actual
        return RecentGapCheck(
            symbol=symbol,
            has_gaps=missing > 0,
            missing_days=missing,
            expected_days=len(expected),
            actual_days=actual,
            completion_percentage=_completion(actual, len(expected)),
        )

    async def find_oldest_persisted_date(self, symbol: str) -> date | None:
        record: DataRecord | None = await self._store.read_oldest_record(symbol)
        return record.date if record is not None else None

    async def analyze_backward_gap(self, symbol: str, target_years: int = 5) -> BackwardGap:
        """Report the span between the target start and the oldest stored record."""

        window_start, window_end = self.target_window(target_years)
        oldest = await self.find_oldest_persisted_date(symbol)

        if oldest is None:
            missing = self._calendar.count_trading_days(window_start, window_end)
            logger.info(f"{symbol}: no stored history, full backward gap of {missing} trading days")
            return BackwardGap(
                symbol=symbol,
                needs_sync=True,
                target_start_date=window_start,
                gap_start=window_start,
                gap_end=window_end,
                estimated_missing_days=missing,
                priority=missing * self._empty_symbol_weight,
            )

        if oldest <= window_start:
            return BackwardGap(
                symbol=symbol,
                needs_sync=False,
                target_start_date=window_start,
                oldest_persisted_date=oldest,
            )

        gap_end = oldest - timedelta(days=1)
        missing = self._calendar.count_trading_days(window_start, gap_end)
        return BackwardGap(
            symbol=symbol,
            needs_sync=True,
            target_start_date=window_start,
            oldest_persisted_date=oldest,
            gap_start=window_start,
            gap_end=gap_end,
            estimated_missing_days=missing,
            priority=float(missing),
        )

    async def analyze_many(
        self,
        symbols: Sequence[str],
        target_years: int = 5,
        *,
        delay: float = 0.0,
    ) -> GlobalGapStats:
        """Analyse several symbols sequentially and aggregate completeness."""

        stats = GlobalGapStats(total_symbols=len(symbols))
        for symbol in symbols:
            try:
                analysis = await self.analyze_gaps(symbol, target_years)
            except Exception as exc:
                logger.warning(f"gap analysis failed for {symbol}: {exc}")
                stats.failures[symbol] = str(exc)
                continue
            stats.analyses[symbol] = analysis
            stats.analyzed += 1
            stats.total_expected_days += analysis.total_trading_days
            stats.total_persisted_days += analysis.persisted_days
            stats.total_missing_days += analysis.missing_days
            if delay:
                await asyncio.sleep(delay)
        return stats


__all__ = [
    "DEFAULT_EMPTY_SYMBOL_WEIGHT",
    "GapDetector",
    "subtract_years",
    "sweep_gaps",
]
