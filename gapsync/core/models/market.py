"""Daily OHLCV record model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date  # noqa: TC003


@dataclass(slots=True, frozen=True)
class DataRecord:
    """One persisted daily bar, unique per ``(symbol, date)``."""

    symbol: str
    date: date
    open: float
    high: float
    low: float
    close: float
    adjusted_close: float | None = None
    volume: int = 0

    @property
    def is_valid(self) -> bool:
        """Whether all four prices are strictly positive."""

        return self.open > 0 and self.high > 0 and self.low > 0 and self.close > 0

    @property
    def key(self) -> tuple[str, date]:
        return (self.symbol, self.date)


__all__ = ["DataRecord"]
