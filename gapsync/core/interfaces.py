"""
Collaborator interfaces for the synchronization engine.

The orchestrator only talks to the upstream API, the record store and the
remote control channel through these contracts, so each can be replaced by
an in-memory fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date
from typing import Any

from gapsync.core.models import DataRecord, RemoteCommand


class MarketDataProvider(ABC):
    """Source of daily bars for a symbol."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used as the rate limit ledger key."""
        pass

    @abstractmethod
    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        """
        Fetch daily bars between ``from_date`` and ``to_date`` inclusive.

        An empty list means the upstream has no data for the range; it is
        not an error.

        Raises:
            UpstreamError: on a non-success HTTP status or malformed payload
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class RecordStore(ABC):
    """Persistence of daily records keyed by ``(symbol, date)``."""

    @abstractmethod
    async def read_records(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        """Return records in the inclusive range ordered newest first."""
        pass

    @abstractmethod
    async def upsert_records(self, records: Sequence[DataRecord]) -> int:
        """Insert or replace records idempotently, returning the row count written."""
        pass

    @abstractmethod
    async def read_oldest_record(self, symbol: str) -> DataRecord | None:
        """Return the oldest record stored for ``symbol``."""
        pass


class CommandChannel(ABC):
    """Polled queue of remote control commands."""

    @abstractmethod
    async def fetch_unprocessed_commands(self, limit: int) -> list[RemoteCommand]:
        """Return up to ``limit`` unprocessed commands, oldest first."""
        pass

    @abstractmethod
    async def mark_processed(self, command_id: int, error_message: str | None = None) -> None:
        """Flag a command as processed, optionally with the failure reason."""
        pass

    @abstractmethod
    async def publish_status(self, snapshot: dict[str, Any]) -> None:
        """Make a status snapshot available to the controlling side."""
        pass


__all__ = ["CommandChannel", "MarketDataProvider", "RecordStore"]
