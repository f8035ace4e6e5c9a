"""Domain models for gap-aware synchronization."""

from gapsync.core.models.commands import CommandAction, RemoteCommand
from gapsync.core.models.gaps import (
    BackwardGap,
    Chunk,
    GapAnalysis,
    GapPeriod,
    GlobalGapStats,
    RecentGapCheck,
)
from gapsync.core.models.market import DataRecord
from gapsync.core.models.sync import (
    AnalysisReport,
    PrioritySyncReport,
    SymbolPriority,
    SymbolSyncResult,
    SyncState,
    SyncStatus,
)

__all__ = [
    "AnalysisReport",
    "BackwardGap",
    "Chunk",
    "CommandAction",
    "DataRecord",
    "GapAnalysis",
    "GapPeriod",
    "GlobalGapStats",
    "PrioritySyncReport",
    "RecentGapCheck",
    "RemoteCommand",
    "SymbolPriority",
    "SymbolSyncResult",
    "SyncState",
    "SyncStatus",
]
