from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from conftest import FakeCommandChannel
from gapsync.core.exceptions import ConfigurationError
from gapsync.core.models import SyncState, SyncStatus
from gapsync.core.services import RemoteControlPoller, SyncOrchestrator


class StubOrchestrator:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.symbols: list[str] = []
        self.fail_start = False

    async def start(self) -> bool:
        self.calls.append("start")
        if self.fail_start:
            raise RuntimeError("already broken")
        return True

    async def stop(self) -> None:
        self.calls.append("stop")

    async def restart(self) -> bool:
        self.calls.append("restart")
        return True

    def update_symbols(self, symbols: Sequence[str]) -> list[str]:
        cleaned = [symbol.strip().upper() for symbol in symbols if symbol.strip()]
        if not cleaned:
            raise ConfigurationError("at least one monitored symbol is required", field="symbols")
        self.calls.append("update_symbols")
        self.symbols = cleaned
        return cleaned

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=SyncState.MONITORING,
            is_running=True,
            monitored_symbols=list(self.symbols),
            processed_symbols=2,
            successful_symbols=2,
            records_added=10,
            started_at=None,
            last_pass_at=None,
            rate_limits={},
        )


@pytest.fixture
def stub_orchestrator() -> StubOrchestrator:
    return StubOrchestrator()


@pytest.fixture
def poller(fake_channel: FakeCommandChannel, stub_orchestrator: StubOrchestrator) -> RemoteControlPoller:
    return RemoteControlPoller(fake_channel, stub_orchestrator, interval=60, batch_size=5)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_poll_dispatches_in_order(
    poller: RemoteControlPoller,
    fake_channel: FakeCommandChannel,
    stub_orchestrator: StubOrchestrator,
) -> None:
    fake_channel.add("START_SYNC")
    fake_channel.add("STOP_SYNC")
    fake_channel.add("RESTART_SYNC")

    handled = await poller.poll_once()

    assert handled == 3
    assert stub_orchestrator.calls == ["start", "stop", "restart"]
    assert fake_channel.processed == {1: None, 2: None, 3: None}


@pytest.mark.asyncio
async def test_poll_respects_batch_size(poller: RemoteControlPoller, fake_channel: FakeCommandChannel) -> None:
    for _ in range(7):
        fake_channel.add("GET_STATUS")

    assert await poller.poll_once() == 5
    assert await poller.poll_once() == 2
    assert await poller.poll_once() == 0
    assert poller.processed == 7
    assert len(fake_channel.snapshots) == 7


@pytest.mark.asyncio
async def test_unknown_action_is_marked_with_error(
    poller: RemoteControlPoller,
    fake_channel: FakeCommandChannel,
    stub_orchestrator: StubOrchestrator,
) -> None:
    fake_channel.add("REBOOT")
    fake_channel.add("START_SYNC")

    await poller.poll_once()

    assert fake_channel.processed[1] == "unknown command action 'REBOOT'"
    assert fake_channel.processed[2] is None
    assert stub_orchestrator.calls == ["start"]


@pytest.mark.asyncio
async def test_update_symbols_accepts_list_or_comma_string(
    poller: RemoteControlPoller,
    fake_channel: FakeCommandChannel,
    stub_orchestrator: StubOrchestrator,
) -> None:
    fake_channel.add("UPDATE_SYMBOLS", {"symbols": ["aapl", "msft"]})
    await poller.poll_once()
    assert stub_orchestrator.symbols == ["AAPL", "MSFT"]

    fake_channel.add("UPDATE_SYMBOLS", {"symbols": "tsla, nvda"})
    await poller.poll_once()
    assert stub_orchestrator.symbols == ["TSLA", "NVDA"]


@pytest.mark.asyncio
async def test_update_symbols_without_payload_fails(
    poller: RemoteControlPoller,
    fake_channel: FakeCommandChannel,
    stub_orchestrator: StubOrchestrator,
) -> None:
    fake_channel.add("UPDATE_SYMBOLS")
    fake_channel.add("UPDATE_SYMBOLS", {"symbols": " , "})

    await poller.poll_once()

    assert "non-empty" in (fake_channel.processed[1] or "")
    assert fake_channel.processed[2] == "at least one monitored symbol is required"
    assert stub_orchestrator.symbols == []


@pytest.mark.asyncio
async def test_get_status_publishes_snapshot(poller: RemoteControlPoller, fake_channel: FakeCommandChannel) -> None:
    fake_channel.add("GET_STATUS")

    await poller.poll_once()

    assert fake_channel.snapshots[0]["state"] == "MONITORING"
    assert fake_channel.snapshots[0]["records_added"] == 10


@pytest.mark.asyncio
async def test_dispatch_failure_is_recorded_not_raised(
    poller: RemoteControlPoller,
    fake_channel: FakeCommandChannel,
    stub_orchestrator: StubOrchestrator,
) -> None:
    stub_orchestrator.fail_start = True
    fake_channel.add("START_SYNC")
    fake_channel.add("GET_STATUS")

    assert await poller.poll_once() == 2
    assert fake_channel.processed == {1: "already broken", 2: None}


@pytest.mark.asyncio
async def test_ticker_swallows_channel_errors(fake_channel: FakeCommandChannel, stub_orchestrator: StubOrchestrator) -> None:
    fake_channel.fetch_error = RuntimeError("channel offline")
    poller = RemoteControlPoller(fake_channel, stub_orchestrator, interval=0.01)  # type: ignore[arg-type]

    poller.start()
    assert poller.is_running
    await asyncio.sleep(0.05)
    fake_channel.fetch_error = None
    fake_channel.add("STOP_SYNC")
    for _ in range(100):
        if fake_channel.processed:
            break
        await asyncio.sleep(0.01)
    await poller.stop()

    assert not poller.is_running
    assert fake_channel.processed == {1: None}


@pytest.mark.asyncio
async def test_remote_start_and_stop_drive_real_orchestrator(
    orchestrator: SyncOrchestrator,
    fake_channel: FakeCommandChannel,
) -> None:
    poller = RemoteControlPoller(fake_channel, orchestrator)
    orchestrator.update_symbols(["AAA"])
    fake_channel.add("START_SYNC")

    await poller.poll_once()
    await orchestrator.join()
    assert orchestrator.state is SyncState.MONITORING

    fake_channel.add("GET_STATUS")
    fake_channel.add("STOP_SYNC")
    await poller.poll_once()

    assert orchestrator.state is SyncState.STOPPED
    assert fake_channel.snapshots[0]["state"] == "MONITORING"
    assert fake_channel.snapshots[0]["monitored_symbols"] == ["AAA"]
