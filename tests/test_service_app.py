from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import duckdb
import pytest

from conftest import FakeMarketDataProvider, make_record, query_from_other_process
from gapsync.app import build_governor, build_service, run_service
from gapsync.core.config import GapSyncConfig
from gapsync.core.models import SyncState


@pytest.fixture
def fast_config() -> GapSyncConfig:
    config = GapSyncConfig()
    config.sync.symbols = ["AAA", "BBB"]
    config.sync.quick_symbols = ["AAA"]
    config.sync.target_years = 1
    config.sync.analysis_delay = 0
    config.sync.chunk_delay = 0
    config.sync.symbol_delay = 0
    config.sync.quick_symbol_delay = 0
    config.rate_limit.min_delay_between_calls = 0
    return config


def test_build_governor_uses_provider_name(fast_config: GapSyncConfig) -> None:
    governor = build_governor(fast_config, "yahoo")

    status = governor.get_status()

    assert governor.providers == ["yahoo"]
    assert status["yahoo"]["max_hour"] == 50
    assert status["yahoo"]["max_day"] == 1500


def test_build_service_wires_shared_connection(
    fast_config: GapSyncConfig,
    duckdb_conn: duckdb.DuckDBPyConnection,
    fake_provider: FakeMarketDataProvider,
) -> None:
    service = build_service(fast_config, connection=duckdb_conn, provider=fake_provider)

    tables = {row[0] for row in duckdb_conn.execute("SHOW TABLES").fetchall()}
    assert {"stock_data", "sync_control", "service_stats"} <= tables
    assert service.orchestrator.symbols == ["AAA", "BBB"]
    assert service.provider is fake_provider


@pytest.mark.asyncio
async def test_run_service_syncs_and_answers_commands(
    fast_config: GapSyncConfig,
    duckdb_conn: duckdb.DuckDBPyConnection,
    fake_provider: FakeMarketDataProvider,
) -> None:
    service = build_service(
        fast_config,
        connection=duckdb_conn,
        provider=fake_provider,
        today=lambda: date(2024, 6, 14),
    )
    stop = asyncio.Event()
    running = asyncio.create_task(run_service(service, stop))

    for _ in range(200):
        if service.orchestrator.state is SyncState.MONITORING:
            break
        await asyncio.sleep(0.01)

    assert service.orchestrator.state is SyncState.MONITORING
    assert service.poller.is_running
    assert await service.store.count_records() > 0

    await service.channel.enqueue("GET_STATUS")
    assert await service.poller.poll_once() == 1
    snapshot = await service.channel.latest_status()
    assert snapshot is not None
    assert snapshot["state"] == "MONITORING"
    assert snapshot["monitored_symbols"] == ["AAA", "BBB"]

    stop.set()
    await asyncio.wait_for(running, timeout=5)

    assert service.orchestrator.state is SyncState.STOPPED
    assert not service.poller.is_running
    with pytest.raises(duckdb.Error):
        duckdb_conn.execute("SELECT 1")


@pytest.mark.asyncio
async def test_run_service_without_auto_start_only_polls(
    fast_config: GapSyncConfig,
    duckdb_conn: duckdb.DuckDBPyConnection,
    fake_provider: FakeMarketDataProvider,
) -> None:
    fast_config.sync.auto_start = False
    service = build_service(fast_config, connection=duckdb_conn, provider=fake_provider)
    stop = asyncio.Event()
    running = asyncio.create_task(run_service(service, stop))
    await asyncio.sleep(0.05)

    assert service.orchestrator.state is SyncState.IDLE
    assert service.poller.is_running
    assert fake_provider.calls == []

    stop.set()
    await asyncio.wait_for(running, timeout=5)


@pytest.mark.asyncio
async def test_file_backed_service_leaves_database_reachable(
    fast_config: GapSyncConfig,
    fake_provider: FakeMarketDataProvider,
    tmp_path: Path,
) -> None:
    database = tmp_path / "service.duckdb"
    fast_config.storage.database = str(database)
    service = build_service(fast_config, provider=fake_provider)

    await service.store.upsert_records([make_record("AAA", date(2024, 6, 13))])
    enqueued = query_from_other_process(
        database, "INSERT INTO sync_control (action, payload) VALUES ('GET_STATUS', '{}') RETURNING id"
    )

    assert service.connection is None
    assert enqueued.returncode == 0, enqueued.stderr
    assert await service.poller.poll_once() == 1
    snapshot = await service.channel.latest_status()
    assert snapshot is not None
    assert snapshot["state"] == "IDLE"
    await service.close()
