"""Orchestrator state and reporting models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime  # noqa: TC003
from enum import Enum
from typing import Any

from gapsync.core.models.gaps import GapAnalysis  # noqa: TC001


class SyncState(str, Enum):
    """Lifecycle states of the sync orchestrator."""

    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    PRIORITY_SYNC = "PRIORITY_SYNC"
    MONITORING = "MONITORING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


@dataclass(slots=True, frozen=True)
class SymbolPriority:
    """Ranking input derived from a gap analysis."""

    symbol: str
    completion_percentage: float
    gap_days: int
    score: float


@dataclass(slots=True)
class AnalysisReport:
    """Outcome of analysing every monitored symbol."""

    total_symbols: int
    analyzed: int = 0
    complete: int = 0
    partial: int = 0
    missing: int = 0
    total_gap_days: int = 0
    priority_symbols: list[SymbolPriority] = field(default_factory=list)
    analyses: dict[str, GapAnalysis] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SymbolSyncResult:
    """Counters for one symbol's pass over its gaps."""

    symbol: str
    success: bool = True
    new_records: int = 0
    gaps_processed: int = 0
    chunks_processed: int = 0
    chunks_failed: int = 0
    error: str | None = None
    message: str | None = None


@dataclass(slots=True)
class PrioritySyncReport:
    """Aggregate of a priority pass across symbols."""

    queued: int
    processed: int = 0
    succeeded: int = 0
    records_added: int = 0
    stopped_early: bool = False
    results: list[SymbolSyncResult] = field(default_factory=list)


@dataclass(slots=True)
class SyncStatus:
    """Snapshot of the orchestrator used by status commands."""

    state: SyncState
    is_running: bool
    monitored_symbols: list[str]
    processed_symbols: int
    successful_symbols: int
    records_added: int
    started_at: datetime | None
    last_pass_at: datetime | None
    rate_limits: dict[str, dict[str, Any]]
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload


__all__ = [
    "AnalysisReport",
    "PrioritySyncReport",
    "SymbolPriority",
    "SymbolSyncResult",
    "SyncState",
    "SyncStatus",
]
