"""
Service host wiring every component from configuration.

Components are built explicitly and passed to each other; nothing is held in
module-level singletons, so tests can build as many services as they need.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from gapsync.core.data.providers import YahooChartProvider
from gapsync.core.data.repositories import DuckDBCommandChannel, DuckDBRecordStore
from gapsync.core.data.schema import ensure_gapsync_tables
from gapsync.core.data.storage import DuckDBFactoryConfig, GapSyncDuckDBFactory, borrow_connection
from gapsync.core.logging import get_logger, log_context
from gapsync.core.services import (
    ChunkPolicy,
    GapDetector,
    RateLimitConfig,
    RateLimitGovernor,
    RemoteControlPoller,
    SyncOrchestrator,
    TradingCalendarProvider,
)

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from gapsync.core.config import GapSyncConfig
    from gapsync.core.data.storage import ConnectionSource
    from gapsync.core.interfaces import MarketDataProvider

logger = get_logger(__name__)


@dataclass
class GapSyncService:
    """All components of one running service instance."""

    config: GapSyncConfig
    connection: DuckDBPyConnection | None
    store: DuckDBRecordStore
    channel: DuckDBCommandChannel
    provider: MarketDataProvider
    governor: RateLimitGovernor
    detector: GapDetector
    orchestrator: SyncOrchestrator
    poller: RemoteControlPoller

    async def close(self) -> None:
        """Stop background work and release network and database handles."""

        await self.poller.stop()
        await self.orchestrator.stop()
        await self.provider.close()
        if self.connection is not None:
            self.connection.close()


def build_governor(config: GapSyncConfig, provider_name: str) -> RateLimitGovernor:
    limits = config.rate_limit
    return RateLimitGovernor(
        {
            provider_name: RateLimitConfig(
                max_calls_per_hour=limits.max_calls_per_hour,
                max_calls_per_day=limits.max_calls_per_day,
                min_delay_between_calls=limits.min_delay_between_calls,
            )
        }
    )


def build_provider(config: GapSyncConfig) -> YahooChartProvider:
    settings = config.provider
    return YahooChartProvider(
        settings.base_url,
        timeout=settings.timeout,
        user_agent=settings.user_agent,
        name=settings.name,
    )


def open_storage(config: GapSyncConfig) -> GapSyncDuckDBFactory:
    """Connection factory for the configured database file."""

    storage = config.storage
    return GapSyncDuckDBFactory(DuckDBFactoryConfig(database=storage.database, lock_timeout=storage.lock_timeout))


def build_service(
    config: GapSyncConfig,
    *,
    connection: DuckDBPyConnection | None = None,
    provider: MarketDataProvider | None = None,
    today: Callable[[], date] | None = None,
) -> GapSyncService:
    """Build a service from configuration.

    ``connection`` and ``provider`` override the configured DuckDB database
    and the Yahoo client. Without a connection the database file is opened
    per operation and never held between them, so other processes such as
    ``gapsync command`` can write to it while the service runs.
    """

    source: ConnectionSource
    if connection is not None:
        source = connection
    else:
        factory = open_storage(config)
        # an in-memory database only lives as long as its connection
        if factory.database == ":memory:":
            connection = factory.create_connection()
        source = connection if connection is not None else factory
    with borrow_connection(source) as conn:
        ensure_gapsync_tables(conn)
    store = DuckDBRecordStore(source, ensure_schema=False)
    channel = DuckDBCommandChannel(source, ensure_schema=False)
    market_provider = provider or build_provider(config)
    governor = build_governor(config, market_provider.name)
    detector = GapDetector(
        store,
        TradingCalendarProvider().get_calendar("us"),
        empty_symbol_weight=config.sync.empty_symbol_weight,
        today=today,
    )
    orchestrator = SyncOrchestrator(
        config,
        detector,
        market_provider,
        store,
        governor,
        chunk_policy=ChunkPolicy(
            quarterly_above_days=config.chunks.quarterly_above_days,
            half_year_above_days=config.chunks.half_year_above_days,
            yearly_above_days=config.chunks.yearly_above_days,
        ),
    )
    poller = RemoteControlPoller(
        channel,
        orchestrator,
        interval=config.control.poll_interval,
        batch_size=config.control.batch_size,
    )
    return GapSyncService(
        config=config,
        connection=connection,
        store=store,
        channel=channel,
        provider=market_provider,
        governor=governor,
        detector=detector,
        orchestrator=orchestrator,
        poller=poller,
    )


async def run_service(service: GapSyncService, stop_event: asyncio.Event | None = None) -> None:
    """Run the poller and, if configured, the sync session until ``stop_event`` is set.

    Without an explicit event, SIGINT and SIGTERM end the run.
    """

    stop = stop_event or asyncio.Event()
    if stop_event is None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

    with log_context(service="gapsync"):
        logger.info(f"gapsync service starting with database {service.config.storage.database}")
        try:
            if service.config.control.enabled:
                service.poller.start()
            if service.config.sync.auto_start:
                await service.orchestrator.start()
            await stop.wait()
        finally:
            logger.info("gapsync service shutting down")
            await service.close()


def run_forever(config: GapSyncConfig) -> None:
    """Blocking entry point used by ``gapsync run``."""

    asyncio.run(run_service(build_service(config)))


__all__ = [
    "GapSyncService",
    "build_governor",
    "build_provider",
    "build_service",
    "open_storage",
    "run_forever",
    "run_service",
]
