"""Gap analysis result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date  # noqa: TC003


@dataclass(slots=True, frozen=True)
class GapPeriod:
    """Maximal run of missing trading days for a symbol.

    ``day_count`` is the number of missing trading days, counting both
    endpoints.
    """

    start_date: date
    end_date: date
    day_count: int

    @property
    def calendar_days(self) -> int:
        """Calendar span of the gap, inclusive of both endpoints."""

        return (self.end_date - self.start_date).days + 1


@dataclass(slots=True, frozen=True)
class Chunk:
    """Bounded sub-range of a gap fetched with a single upstream request.

    ``day_count`` is the calendar span, inclusive of both endpoints.
    """

    start_date: date
    end_date: date
    day_count: int


@dataclass(slots=True, frozen=True)
class GapAnalysis:
    """Result of diffing the trading calendar against persisted records."""

    symbol: str
    window_start: date
    window_end: date
    total_trading_days: int
    persisted_days: int
    missing_days: int
    gap_periods: tuple[GapPeriod, ...]
    completion_percentage: float
    first_persisted_date: date | None = None
    last_persisted_date: date | None = None
    priority_weight: float = 1.0

    @property
    def has_data(self) -> bool:
        return self.persisted_days > 0

    @property
    def largest_gap(self) -> GapPeriod | None:
        return self.gap_periods[0] if self.gap_periods else None

    @property
    def priority_score(self) -> float:
        """Missing trading days scaled by the symbol's priority weight."""

        return self.missing_days * self.priority_weight


@dataclass(slots=True, frozen=True)
class RecentGapCheck:
    """Lightweight completeness check over a trailing window."""

    symbol: str
    has_gaps: bool
    missing_days: int
    expected_days: int
    actual_days: int
    completion_percentage: float


@dataclass(slots=True, frozen=True)
class BackwardGap:
    """Span before the oldest persisted record that still needs history."""

    symbol: str
    needs_sync: bool
    target_start_date: date
    oldest_persisted_date: date | None = None
    gap_start: date | None = None
    gap_end: date | None = None
    estimated_missing_days: int = 0
    priority: float = 0.0


@dataclass(slots=True)
class GlobalGapStats:
    """Aggregated completeness across many symbols."""

    total_symbols: int
    analyzed: int = 0
    total_expected_days: int = 0
    total_persisted_days: int = 0
    total_missing_days: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    analyses: dict[str, GapAnalysis] = field(default_factory=dict)

    @property
    def completion_percentage(self) -> float:
        if self.total_expected_days == 0:
            return 100.0
        return self.total_persisted_days / self.total_expected_days * 100


__all__ = [
    "BackwardGap",
    "Chunk",
    "GapAnalysis",
    "GapPeriod",
    "GlobalGapStats",
    "RecentGapCheck",
]
