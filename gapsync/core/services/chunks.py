"""Split large gaps into request-sized date ranges."""

from __future__ import annotations

import calendar as _calendar
from dataclasses import dataclass
from datetime import date, timedelta

from gapsync.core.models import Chunk, GapPeriod


@dataclass(frozen=True)
class ChunkPolicy:
    """Calendar-day thresholds selecting the chunk span in months.

    Gaps spanning more than ``quarterly_above_days`` are fetched three months
    at a time, more than ``half_year_above_days`` six months at a time, more
    than ``yearly_above_days`` a year at a time, and anything smaller in a
    single request.
    """

    quarterly_above_days: int = 1000
    half_year_above_days: int = 500
    yearly_above_days: int = 100

    def months_for(self, day_count: int) -> int | None:
        """Return the chunk span in months, or ``None`` for a single chunk."""

        if day_count > self.quarterly_above_days:
            return 3
        if day_count > self.half_year_above_days:
            return 6
        if day_count > self.yearly_above_days:
            return 12
        return None


DEFAULT_CHUNK_POLICY = ChunkPolicy()


def add_months(day: date, months: int) -> date:
    """Move ``day`` forward by ``months``, clamping to the end of the month."""

    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = _calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def plan_chunks(
    gap_start: date,
    gap_end: date,
    day_count: int | None = None,
    policy: ChunkPolicy = DEFAULT_CHUNK_POLICY,
) -> list[Chunk]:
    """Tile ``[gap_start, gap_end]`` with contiguous, non-overlapping chunks.

    ``day_count`` is the calendar span of the gap and selects the chunk size;
    it defaults to the inclusive span between the two dates. Chunk boundaries
    are measured from ``gap_start`` so month-end clamping never drifts.
    """

    if gap_end < gap_start:
        return []

    span = (gap_end - gap_start).days + 1
    months = policy.months_for(span if day_count is None else day_count)
    if months is None:
        return [Chunk(start_date=gap_start, end_date=gap_end, day_count=span)]

    chunks: list[Chunk] = []
    current = gap_start
    step = 1
    while current <= gap_end:
        chunk_end = min(add_months(gap_start, months * step) - timedelta(days=1), gap_end)
        chunks.append(Chunk(start_date=current, end_date=chunk_end, day_count=(chunk_end - current).days + 1))
        current = chunk_end + timedelta(days=1)
        step += 1
    return chunks


def plan_gap_chunks(gap: GapPeriod, policy: ChunkPolicy = DEFAULT_CHUNK_POLICY) -> list[Chunk]:
    """Plan chunks for a detected gap using its calendar span."""

    return plan_chunks(gap.start_date, gap.end_date, gap.calendar_days, policy)


__all__ = [
    "DEFAULT_CHUNK_POLICY",
    "ChunkPolicy",
    "add_months",
    "plan_chunks",
    "plan_gap_chunks",
]
