"""Pytest configuration and shared fakes for the gapsync test suite."""

from __future__ import annotations

import asyncio
import subprocess
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

import duckdb
import pytest

from gapsync.core.config import GapSyncConfig
from gapsync.core.interfaces import CommandChannel, MarketDataProvider, RecordStore
from gapsync.core.models import DataRecord, RemoteCommand
from gapsync.core.services import (
    GapDetector,
    RateLimitConfig,
    RateLimitGovernor,
    SyncOrchestrator,
    TradingCalendar,
    TradingCalendarProvider,
)

FIXED_TODAY = date(2024, 6, 14)

_HOLD_DATABASE_SCRIPT = """
import sys
import time

import duckdb

conn = duckdb.connect(sys.argv[1])
print("locked", flush=True)
time.sleep(float(sys.argv[2]))
conn.close()
"""

_QUERY_DATABASE_SCRIPT = """
import sys

import duckdb

with duckdb.connect(sys.argv[1]) as conn:
    print(conn.execute(sys.argv[2]).fetchone()[0])
"""


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--gapsync-run-integration",
        action="store_true",
        default=False,
        help="Run gapsync integration tests that require network access.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks gapsync tests requiring network or external services",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested."""

    if config.getoption("--gapsync-run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="integration tests require --gapsync-run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def make_record(symbol: str, day: date, close: float = 100.0) -> DataRecord:
    return DataRecord(
        symbol=symbol,
        date=day,
        open=close - 1,
        high=close + 1,
        low=close - 2,
        close=close,
        adjusted_close=close,
        volume=1_000,
    )


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed record store."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, date], DataRecord] = {}
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None

    def seed(self, symbol: str, days: Sequence[date]) -> None:
        for day in days:
            self.rows[(symbol, day)] = make_record(symbol, day)

    async def read_records(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        if self.read_error is not None:
            raise self.read_error
        matches = [
            record for (key_symbol, day), record in self.rows.items() if key_symbol == symbol and from_date <= day <= to_date
        ]
        return sorted(matches, key=lambda record: record.date, reverse=True)

    async def upsert_records(self, records: Sequence[DataRecord]) -> int:
        if self.write_error is not None:
            raise self.write_error
        for record in records:
            self.rows[record.key] = record
        return len(records)

    async def read_oldest_record(self, symbol: str) -> DataRecord | None:
        matches = [record for (key_symbol, _), record in self.rows.items() if key_symbol == symbol]
        return min(matches, key=lambda record: record.date) if matches else None


class FakeMarketDataProvider(MarketDataProvider):
    """Returns one bar per trading day of the requested range.

    ``errors`` are raised by successive calls before any data is served.
    Setting ``gate`` makes each call wait for it.
    """

    def __init__(self, calendar: TradingCalendar) -> None:
        self._calendar = calendar
        self.calls: list[tuple[str, date, date]] = []
        self.errors: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    @property
    def name(self) -> str:
        return "yahoo"

    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        self.calls.append((symbol, from_date, to_date))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        days = self._calendar.trading_days(from_date, to_date)
        return [make_record(symbol, day) for day in reversed(days)]


@contextmanager
def database_held_elsewhere(path: Path, seconds: float) -> Iterator[None]:
    """Keep a read-write DuckDB handle on ``path`` open in another process for ``seconds``."""

    process = subprocess.Popen(
        [sys.executable, "-c", _HOLD_DATABASE_SCRIPT, str(path), str(seconds)],
        stdout=subprocess.PIPE,
        text=True,
    )
    try:
        assert process.stdout is not None
        assert process.stdout.readline().strip() == "locked"
        yield
    finally:
        process.wait(timeout=60)
        if process.stdout is not None:
            process.stdout.close()


def query_from_other_process(path: Path, sql: str) -> subprocess.CompletedProcess[str]:
    """Run one scalar query against ``path`` from a separate interpreter."""

    return subprocess.run(
        [sys.executable, "-c", _QUERY_DATABASE_SCRIPT, str(path), sql],
        capture_output=True,
        text=True,
        timeout=60,
    )


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleeper that advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.durations: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.durations.append(seconds)
        self._clock.advance(max(seconds, 0.0))
        await asyncio.sleep(0)


class FakeCommandChannel(CommandChannel):
    """In-memory command queue."""

    def __init__(self) -> None:
        self.commands: list[RemoteCommand] = []
        self.processed: dict[int, str | None] = {}
        self.snapshots: list[dict[str, Any]] = []
        self.fetch_error: Exception | None = None

    def add(self, action: str, payload: dict[str, Any] | None = None) -> int:
        command_id = len(self.commands) + 1
        self.commands.append(RemoteCommand(id=command_id, action=action, payload=payload or {}))
        return command_id

    async def fetch_unprocessed_commands(self, limit: int) -> list[RemoteCommand]:
        if self.fetch_error is not None:
            raise self.fetch_error
        pending = [command for command in self.commands if not command.processed]
        return pending[:limit]

    async def mark_processed(self, command_id: int, error_message: str | None = None) -> None:
        assert command_id not in self.processed, f"command {command_id} processed twice"
        self.processed[command_id] = error_message
        for command in self.commands:
            if command.id == command_id:
                command.processed = True
                command.error_message = error_message

    async def publish_status(self, snapshot: dict[str, Any]) -> None:
        self.snapshots.append(snapshot)


@pytest.fixture
def fixed_today() -> date:
    return FIXED_TODAY


@pytest.fixture
def us_calendar() -> TradingCalendar:
    return TradingCalendarProvider().get_calendar("us")


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def detector(memory_store: InMemoryRecordStore, us_calendar: TradingCalendar) -> GapDetector:
    return GapDetector(memory_store, us_calendar, today=lambda: FIXED_TODAY)


@pytest.fixture
def fake_provider(us_calendar: TradingCalendar) -> FakeMarketDataProvider:
    return FakeMarketDataProvider(us_calendar)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(fake_clock)


@pytest.fixture
def sync_config() -> GapSyncConfig:
    config = GapSyncConfig()
    config.sync.symbols = ["AAA", "BBB", "CCC"]
    config.sync.quick_symbols = ["AAA"]
    config.rate_limit.max_calls_per_hour = 1_000
    config.rate_limit.max_calls_per_day = 10_000
    config.rate_limit.min_delay_between_calls = 0.0
    config.sync.restart_pause = 0.0
    return config


@pytest.fixture
def governor(sync_config: GapSyncConfig, fake_clock: FakeClock) -> RateLimitGovernor:
    limits = sync_config.rate_limit
    return RateLimitGovernor(
        {
            "yahoo": RateLimitConfig(
                max_calls_per_hour=limits.max_calls_per_hour,
                max_calls_per_day=limits.max_calls_per_day,
                min_delay_between_calls=limits.min_delay_between_calls,
            )
        },
        clock=fake_clock,
    )


@pytest.fixture
def orchestrator(
    sync_config: GapSyncConfig,
    detector: GapDetector,
    fake_provider: FakeMarketDataProvider,
    memory_store: InMemoryRecordStore,
    governor: RateLimitGovernor,
    recording_sleep: RecordingSleep,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        sync_config,
        detector,
        fake_provider,
        memory_store,
        governor,
        sleep=recording_sleep,
    )


@pytest.fixture
def fake_channel() -> FakeCommandChannel:
    return FakeCommandChannel()


@pytest.fixture
def duckdb_conn() -> Iterator[duckdb.DuckDBPyConnection]:
    conn = duckdb.connect(":memory:")
    try:
        yield conn
    finally:
        conn.close()

