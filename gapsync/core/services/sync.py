"""
Gap-aware synchronization orchestrator.

A session runs three phases: a full analysis of every monitored symbol, a
priority pass that fills the worst gaps chunk by chunk through the rate
limit governor, and finally two recurring cycles (incremental and quick)
that keep the store complete. Stopping is cooperative: every delay waits on
the session's stop event and the loops check it between symbols, gaps and
chunks.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from gapsync.core.exceptions import ConfigurationError, PersistenceError, UpstreamError
from gapsync.core.logging import get_logger, log_context
from gapsync.core.models import (
    AnalysisReport,
    Chunk,
    PrioritySyncReport,
    SymbolPriority,
    SymbolSyncResult,
    SyncState,
    SyncStatus,
)
from gapsync.core.services.chunks import ChunkPolicy, plan_gap_chunks
from gapsync.core.services.scheduler import RecurringTask

if TYPE_CHECKING:
    from gapsync.core.config import GapSyncConfig
    from gapsync.core.interfaces import MarketDataProvider, RecordStore
    from gapsync.core.models import GapAnalysis
    from gapsync.core.services.gaps import GapDetector
    from gapsync.core.services.rate_limit import RateLimitGovernor

logger = get_logger(__name__)

PROGRESS_EVERY = 5
MIN_RATE_LIMIT_WAIT = 1.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncOrchestrator:
    """Drives analysis, the priority pass and the recurring cycles."""

    def __init__(
        self,
        config: GapSyncConfig,
        detector: GapDetector,
        provider: MarketDataProvider,
        store: RecordStore,
        governor: RateLimitGovernor,
        *,
        chunk_policy: ChunkPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        now: Callable[[], datetime] | None = None,
        stop_grace: float = 10.0,
    ) -> None:
        """Wire the orchestrator to its collaborators.

        Args:
            config: service configuration, validated on :meth:`start`
            detector: gap detector reading from ``store``
            provider: upstream market-data client
            store: persistence for fetched records
            governor: admission control keyed by ``provider.name``
            chunk_policy: gap splitting thresholds, defaults to ``config.chunks``
            sleep: replacement for the interruptible delay, used by tests
            now: wall clock for status timestamps
            stop_grace: seconds :meth:`stop` waits for the pipeline before cancelling it
        """
        self._config = config
        self._detector = detector
        self._provider = provider
        self._store = store
        self._governor = governor
        self._chunk_policy = chunk_policy or ChunkPolicy(**asdict(config.chunks))
        self._sleep = sleep or self._wait
        self._now = now or _utcnow
        self._stop_grace = stop_grace

        self._symbols: list[str] = list(config.sync.symbols)
        self._state = SyncState.IDLE
        self._running = False
        self._stop_event = asyncio.Event()
        self._work_lock = asyncio.Lock()
        self._pipeline: asyncio.Task[None] | None = None
        self._cycles: list[RecurringTask] = []
        self._session_id: str | None = None

        self._processed_symbols = 0
        self._successful_symbols = 0
        self._records_added = 0
        self._started_at: datetime | None = None
        self._last_pass_at: datetime | None = None
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def cycles(self) -> list[RecurringTask]:
        return list(self._cycles)

    @property
    def _stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Open a session and launch the pipeline in the background.

        Returns ``False`` when a session is already running.

        Raises:
            ConfigurationError: if the configuration is unusable; the state
                becomes ``ERROR`` and no session is opened.
        """
        if self._running:
            logger.warning("sync already running, start ignored")
            return False

        try:
            self._config.validate()
        except ConfigurationError as exc:
            self._state = SyncState.ERROR
            self._last_error = exc.message
            logger.error(f"sync start aborted: {exc.message}")
            raise

        self._running = True
        self._stop_event = asyncio.Event()
        self._session_id = uuid4().hex
        self._started_at = self._now()
        self._last_error = None
        self._processed_symbols = 0
        self._successful_symbols = 0
        self._records_added = 0
        self._state = SyncState.ANALYZING

        logger.info(
            f"starting sync session for {len(self._symbols)} symbols over {self._config.sync.target_years} years"
        )
        self._pipeline = asyncio.create_task(self._run_session(), name="gapsync:session")
        return True

    async def stop(self) -> None:
        """End the session, waiting for the cycles and the pipeline to finish."""

        if not self._running and self._pipeline is None and not self._cycles:
            # still wakes a restart waiting out its pause
            self._stop_event.set()
            logger.info("sync not running, stop ignored")
            return

        logger.info("stopping sync session")
        self._running = False
        self._stop_event.set()

        for cycle in self._cycles:
            await cycle.stop()
        self._cycles = []

        pipeline, self._pipeline = self._pipeline, None
        if pipeline is not None and not pipeline.done():
            done, _ = await asyncio.wait({pipeline}, timeout=self._stop_grace)
            if not done:
                pipeline.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pipeline

        self._state = SyncState.STOPPED
        logger.info("sync session stopped")

    async def restart(self) -> bool:
        """Stop, pause briefly and start a new session.

        A :meth:`stop` during the pause cancels the restart.
        """

        await self.stop()
        self._stop_event = asyncio.Event()
        await self._sleep(self._config.sync.restart_pause)
        if self._stop_event.is_set():
            logger.info("restart cancelled during pause")
            return False
        return await self.start()

    async def join(self) -> None:
        """Wait until the current session pipeline has finished."""

        pipeline = self._pipeline
        if pipeline is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await pipeline

    def update_symbols(self, symbols: Sequence[str]) -> list[str]:
        """Replace the monitored symbol set; takes effect on the next pass."""

        cleaned: list[str] = []
        for symbol in symbols:
            normalized = str(symbol).strip().upper()
            if normalized and normalized not in cleaned:
                cleaned.append(normalized)
        if not cleaned:
            raise ConfigurationError("at least one monitored symbol is required", field="symbols")
        self._symbols = cleaned
        logger.info(f"monitored symbols updated: {', '.join(cleaned)}")
        return list(cleaned)

    def status(self) -> SyncStatus:
        """Snapshot of the session for status reporting."""

        return SyncStatus(
            state=self._state,
            is_running=self._running,
            monitored_symbols=list(self._symbols),
            processed_symbols=self._processed_symbols,
            successful_symbols=self._successful_symbols,
            records_added=self._records_added,
            started_at=self._started_at,
            last_pass_at=self._last_pass_at,
            rate_limits=self._governor.get_status(),
            last_error=self._last_error,
        )

    async def _run_session(self) -> None:
        with log_context(trace_id=self._session_id, provider=self._provider.name):
            try:
                async with self._work_lock:
                    report = await self.perform_full_analysis()
                    self._log_analysis_report(report)
                    if self._stop_requested:
                        return

                    self._state = SyncState.PRIORITY_SYNC
                    await self.perform_priority_sync(report)
                    self._last_pass_at = self._now()
                if self._stop_requested:
                    return

                self._start_monitoring()
                self._state = SyncState.MONITORING
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._running = False
                self._state = SyncState.ERROR
                self._last_error = str(exc)
                logger.exception(f"sync session failed: {exc}")

    def _start_monitoring(self) -> None:
        sync = self._config.sync
        self._cycles = [
            RecurringTask("incremental", sync.full_cycle_interval, self._incremental_tick),
            RecurringTask("quick", sync.quick_cycle_interval, self._quick_tick),
        ]
        for cycle in self._cycles:
            cycle.start()
        logger.info(
            f"monitoring armed: incremental every {sync.full_cycle_interval:.0f}s, "
            f"quick every {sync.quick_cycle_interval:.0f}s"
        )

    async def _incremental_tick(self) -> None:
        if self._stop_requested:
            return
        with log_context(trace_id=self._session_id, provider=self._provider.name, cycle="incremental"):
            async with self._work_lock:
                await self.perform_incremental_sync()
                self._last_pass_at = self._now()

    async def _quick_tick(self) -> None:
        if self._stop_requested:
            return
        with log_context(trace_id=self._session_id, provider=self._provider.name, cycle="quick"):
            async with self._work_lock:
                await self.perform_quick_sync()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def perform_full_analysis(self) -> AnalysisReport:
        """Analyse every monitored symbol and rank the ones needing a sync."""

        sync = self._config.sync
        symbols = list(self._symbols)
        report = AnalysisReport(total_symbols=len(symbols))

        for symbol in symbols:
            try:
                analysis = await self._detector.analyze_gaps(symbol, sync.target_years)
            except Exception as exc:
                report.errors[symbol] = str(exc)
                logger.warning(f"analysis failed for {symbol}: {exc}")
            else:
                report.analyses[symbol] = analysis
                report.analyzed += 1
                if analysis.completion_percentage >= sync.complete_threshold:
                    report.complete += 1
                elif analysis.completion_percentage > 0:
                    report.partial += 1
                else:
                    report.missing += 1
                report.total_gap_days += analysis.missing_days

                if analysis.completion_percentage < sync.priority_threshold:
                    report.priority_symbols.append(
                        SymbolPriority(
                            symbol=symbol,
                            completion_percentage=analysis.completion_percentage,
                            gap_days=analysis.missing_days,
                            score=analysis.priority_score,
                        )
                    )
            await self._sleep(sync.analysis_delay)

        report.priority_symbols.sort(key=lambda item: item.score, reverse=True)
        return report

    def _log_analysis_report(self, report: AnalysisReport) -> None:
        logger.info(
            f"analysis: {report.analyzed}/{report.total_symbols} symbols, {report.complete} complete, "
            f"{report.partial} partial, {report.missing} missing, {report.total_gap_days} gap days, "
            f"{len(report.priority_symbols)} queued"
        )
        for rank, item in enumerate(report.priority_symbols[:10], start=1):
            logger.info(
                f"priority {rank}: {item.symbol} score {item.score:.0f} "
                f"({item.completion_percentage:.1f}% complete, {item.gap_days} gap days)"
            )

    async def get_progress_report(self) -> dict[str, Any]:
        """Run a fresh analysis and summarise overall completeness."""

        report = await self.perform_full_analysis()
        completion = report.complete / report.total_symbols * 100 if report.total_symbols else 100.0
        return {
            "completion_percentage": round(completion, 1),
            "total_gap_days": report.total_gap_days,
            "priority_symbols": len(report.priority_symbols),
            "last_update": self._now().isoformat(),
        }

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    async def perform_priority_sync(self, report: AnalysisReport) -> PrioritySyncReport:
        """Fill gaps for the queued symbols, highest score first."""

        sync = self._config.sync
        queue = report.priority_symbols
        summary = PrioritySyncReport(queued=len(queue))
        if not queue:
            logger.info("every monitored symbol is above the priority threshold")
            return summary

        logger.info(f"priority sync of {len(queue)} symbols")
        for position, item in enumerate(queue, start=1):
            if self._stop_requested:
                summary.stopped_early = True
                break

            with log_context(symbol=item.symbol):
                logger.info(
                    f"[{position}/{len(queue)}] syncing {item.symbol} "
                    f"(score {item.score:.0f}, {item.gap_days} gap days)"
                )
                result = await self.sync_symbol(item.symbol, report.analyses.get(item.symbol))

            summary.results.append(result)
            summary.processed += 1
            self._processed_symbols += 1
            if result.success:
                summary.succeeded += 1
                summary.records_added += result.new_records
                self._successful_symbols += 1
                self._records_added += result.new_records

            if summary.processed % PROGRESS_EVERY == 0:
                self._log_progress(summary)

            if position < len(queue):
                await self._sleep(sync.symbol_delay if result.success else sync.symbol_error_delay)

        if self._stop_requested and summary.processed < summary.queued:
            summary.stopped_early = True
            logger.info(f"priority sync stopped after {summary.processed} symbols")

        logger.info(
            f"priority sync finished: {summary.succeeded}/{summary.processed} succeeded, "
            f"{summary.records_added} records added"
        )
        return summary

    def _log_progress(self, summary: PrioritySyncReport) -> None:
        progress = summary.processed / summary.queued * 100
        logger.bind(rate_limit=self._governor.get_status().get(self._provider.name)).info(
            f"progress {progress:.1f}% ({summary.processed}/{summary.queued}), "
            f"{summary.succeeded} succeeded, {summary.records_added} records added"
        )

    async def sync_symbol(self, symbol: str, analysis: GapAnalysis | None = None) -> SymbolSyncResult:
        """Fetch and persist every gap of ``symbol``, longest gap first.

        Chunk failures are logged and skipped; any other error ends the
        symbol and is reported in the result instead of being raised.
        """

        result = SymbolSyncResult(symbol=symbol)
        try:
            if analysis is None:
                analysis = await self._detector.analyze_gaps(symbol, self._config.sync.target_years)
            if not analysis.gap_periods:
                result.message = "already complete"
                return result

            logger.info(f"{symbol}: {len(analysis.gap_periods)} gaps to fill")
            for gap in analysis.gap_periods:
                if self._stop_requested:
                    break
                chunks = plan_gap_chunks(gap, self._chunk_policy)
                logger.debug(
                    f"{symbol}: gap {gap.start_date.isoformat()} -> {gap.end_date.isoformat()} "
                    f"({gap.day_count} days) in {len(chunks)} chunks"
                )
                result.gaps_processed += 1
                for chunk in chunks:
                    if not await self._await_admission():
                        break
                    written = await self._sync_chunk(symbol, chunk)
                    result.chunks_processed += 1
                    if written is None:
                        result.chunks_failed += 1
                    else:
                        result.new_records += written
                if self._stop_requested:
                    break
        except Exception as exc:
            result.success = False
            result.error = str(exc)
            logger.error(f"{symbol}: sync failed: {exc}")
        else:
            logger.info(
                f"{symbol}: {result.new_records} records from {result.chunks_processed} chunks "
                f"({result.chunks_failed} failed)"
            )
        return result

    async def _await_admission(self) -> bool:
        name = self._provider.name
        while not self._governor.can_make_request(name):
            if self._stop_requested:
                return False
            wait = max(self._governor.get_wait_time(name) + self._config.sync.rate_limit_margin, MIN_RATE_LIMIT_WAIT)
            logger.info(f"rate limit reached for {name}, waiting {wait:.0f}s")
            await self._sleep(wait)
        return not self._stop_requested

    async def _sync_chunk(self, symbol: str, chunk: Chunk) -> int | None:
        """Fetch and persist one chunk, returning rows written or ``None`` on failure."""

        sync = self._config.sync
        span = f"{chunk.start_date.isoformat()} -> {chunk.end_date.isoformat()}"
        try:
            try:
                records = await self._provider.fetch_daily_bars(symbol, chunk.start_date, chunk.end_date)
            finally:
                self._governor.record_api_call(self._provider.name)
            written = await self._store.upsert_records(records) if records else 0
        except UpstreamError as exc:
            logger.bind(error_code=exc.error_code).warning(f"{symbol}: chunk {span} failed: {exc.message}")
            await self._sleep(sync.rate_limit_error_delay if exc.is_rate_limited else sync.chunk_error_delay)
            return None
        except PersistenceError as exc:
            logger.bind(error_code=exc.error_code).warning(f"{symbol}: chunk {span} not saved: {exc.message}")
            await self._sleep(sync.chunk_error_delay)
            return None

        if written:
            logger.debug(f"{symbol}: chunk {span} saved {written} records")
        else:
            logger.debug(f"{symbol}: chunk {span} returned no data")
        await self._sleep(sync.chunk_delay)
        return written

    async def perform_incremental_sync(self) -> PrioritySyncReport:
        """Recurring full cycle: re-analyse everything and run a priority pass."""

        logger.info("incremental sync cycle")
        report = await self.perform_full_analysis()
        return await self.perform_priority_sync(report)

    async def perform_quick_sync(self) -> list[SymbolSyncResult]:
        """Recurring quick cycle over the most active symbols.

        Only symbols with missing days in the trailing window are synced. The
        cycle ends early once the governor refuses admission.
        """

        sync = self._config.sync
        name = self._provider.name
        results: list[SymbolSyncResult] = []
        logger.info("quick sync cycle")

        for symbol in sync.quick_symbols:
            if self._stop_requested:
                break
            if not self._governor.can_make_request(name):
                logger.info(f"quick sync deferred, rate limit reached for {name}")
                break
            try:
                check = await self._detector.check_recent_gaps(symbol, sync.recent_days)
            except Exception as exc:
                logger.warning(f"quick check failed for {symbol}: {exc}")
                continue

            if check.has_gaps:
                with log_context(symbol=symbol):
                    result = await self.sync_symbol(symbol)
                results.append(result)
                self._processed_symbols += 1
                if result.success:
                    self._successful_symbols += 1
                    self._records_added += result.new_records
                logger.info(f"{symbol}: quick sync added {result.new_records} records")
            await self._sleep(sync.quick_symbol_delay)
        return results

    async def _wait(self, seconds: float) -> None:
        """Sleep up to ``seconds``, returning early when a stop is requested."""

        if seconds <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)


__all__ = ["MIN_RATE_LIMIT_WAIT", "PROGRESS_EVERY", "SyncOrchestrator"]
