"""Gap analysis and chunk planning commands."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

import typer

from gapsync.app import open_storage
from gapsync.core.config import GapSyncConfig
from gapsync.core.data.repositories import DuckDBRecordStore
from gapsync.core.exceptions import GapSyncError
from gapsync.core.models import BackwardGap, Chunk, GapAnalysis
from gapsync.core.services import ChunkPolicy, GapDetector, TradingCalendarProvider, plan_chunks

from .constants import RUNTIME_EXIT_CODE
from .utils import emit_error, load_config, parse_date, prepare_output, split_symbols

ANALYSIS_COLUMNS = [
    "symbol",
    "completion",
    "trading_days",
    "persisted",
    "missing",
    "gaps",
    "largest_gap",
    "first_date",
    "last_date",
]
BACKWARD_COLUMNS = ["symbol", "needs_sync", "oldest_date", "gap_start", "gap_end", "missing", "priority"]
PLAN_COLUMNS = ["chunk", "start_date", "end_date", "days"]


def register(app: typer.Typer) -> None:
    app.command("analyze")(analyze_command)
    app.command("plan")(plan_command)


@contextmanager
def open_detector(config: GapSyncConfig) -> Iterator[GapDetector]:
    """Yield a gap detector reading from the configured database."""

    yield GapDetector(
        DuckDBRecordStore(open_storage(config)),
        TradingCalendarProvider().get_calendar("us"),
        empty_symbol_weight=config.sync.empty_symbol_weight,
    )


def analyze_command(
    ctx: typer.Context,
    symbols: list[str] = typer.Argument(None, help="Symbols to analyse; defaults to the monitored set."),
    years: int | None = typer.Option(None, "--years", "-y", min=1, help="Target window in years."),
    backward: bool = typer.Option(False, "--backward", help="Report the span before the oldest stored record."),
) -> None:
    """Report missing trading days per symbol."""

    config = load_config(ctx)
    targets = split_symbols(symbols or []) or list(config.sync.symbols)
    target_years = years or config.sync.target_years
    formatter, stream, stack = prepare_output(ctx)

    try:
        with open_detector(config) as detector:
            if backward:
                gaps = asyncio.run(_backward_gaps(detector, targets, target_years))
                rows = [_backward_to_row(gap) for gap in gaps]
                columns = BACKWARD_COLUMNS
            else:
                stats = asyncio.run(detector.analyze_many(targets, target_years))
                rows = [_analysis_to_row(stats.analyses[symbol]) for symbol in targets if symbol in stats.analyses]
                for symbol, error in stats.failures.items():
                    emit_error(error, "ANALYSIS_FAILED", details={"symbol": symbol})
                columns = ANALYSIS_COLUMNS
        formatter.render(rows, stream=stream, columns=columns)
    except GapSyncError as exc:
        emit_error(exc.message, exc.error_code, details=exc.details)
        raise typer.Exit(code=RUNTIME_EXIT_CODE) from exc
    finally:
        stack.close()


async def _backward_gaps(detector: GapDetector, symbols: list[str], years: int) -> list[BackwardGap]:
    return [await detector.analyze_backward_gap(symbol, years) for symbol in symbols]


def plan_command(
    ctx: typer.Context,
    start: str = typer.Argument(..., help="First day of the gap (YYYY-MM-DD)."),
    end: str = typer.Argument(..., help="Last day of the gap (YYYY-MM-DD)."),
    days: int | None = typer.Option(None, "--days", min=0, help="Override the day count used to pick the chunk size."),
) -> None:
    """Show how a gap would be split into request chunks."""

    gap_start = parse_date(start, "START")
    gap_end = parse_date(end, "END")
    if gap_end < gap_start:
        raise typer.BadParameter("END must not be before START", param_hint="END")

    config = load_config(ctx)
    policy = ChunkPolicy(
        quarterly_above_days=config.chunks.quarterly_above_days,
        half_year_above_days=config.chunks.half_year_above_days,
        yearly_above_days=config.chunks.yearly_above_days,
    )
    chunks = plan_chunks(gap_start, gap_end, days, policy)

    formatter, stream, stack = prepare_output(ctx)
    try:
        formatter.render(
            [_chunk_to_row(index, chunk) for index, chunk in enumerate(chunks, start=1)],
            stream=stream,
            columns=PLAN_COLUMNS,
        )
    finally:
        stack.close()


def _analysis_to_row(analysis: GapAnalysis) -> Mapping[str, object]:
    largest = analysis.largest_gap
    return {
        "symbol": analysis.symbol,
        "completion": round(analysis.completion_percentage, 2),
        "trading_days": analysis.total_trading_days,
        "persisted": analysis.persisted_days,
        "missing": analysis.missing_days,
        "gaps": len(analysis.gap_periods),
        "largest_gap": (
            f"{largest.start_date.isoformat()}..{largest.end_date.isoformat()} ({largest.day_count})"
            if largest
            else None
        ),
        "first_date": analysis.first_persisted_date,
        "last_date": analysis.last_persisted_date,
    }


def _backward_to_row(gap: BackwardGap) -> Mapping[str, object]:
    return {
        "symbol": gap.symbol,
        "needs_sync": gap.needs_sync,
        "oldest_date": gap.oldest_persisted_date,
        "gap_start": gap.gap_start,
        "gap_end": gap.gap_end,
        "missing": gap.estimated_missing_days,
        "priority": gap.priority,
    }


def _chunk_to_row(index: int, chunk: Chunk) -> Mapping[str, object]:
    return {
        "chunk": index,
        "start_date": chunk.start_date,
        "end_date": chunk.end_date,
        "days": chunk.day_count,
    }


__all__ = ["analyze_command", "open_detector", "plan_command", "register"]
