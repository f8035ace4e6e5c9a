"""Synchronization services."""

from gapsync.core.services.calendars import (
    TradingCalendar,
    TradingCalendarProvider,
    builtin_calendars,
    generate_calendar,
    us_market_holidays,
)
from gapsync.core.services.chunks import ChunkPolicy, add_months, plan_chunks, plan_gap_chunks
from gapsync.core.services.control import RemoteControlPoller, UnknownCommandError
from gapsync.core.services.gaps import GapDetector, subtract_years, sweep_gaps
from gapsync.core.services.rate_limit import RateLimitConfig, RateLimitGovernor
from gapsync.core.services.scheduler import RecurringTask
from gapsync.core.services.sync import SyncOrchestrator

__all__ = [
    "ChunkPolicy",
    "GapDetector",
    "RateLimitConfig",
    "RateLimitGovernor",
    "RecurringTask",
    "RemoteControlPoller",
    "SyncOrchestrator",
    "TradingCalendar",
    "TradingCalendarProvider",
    "UnknownCommandError",
    "add_months",
    "builtin_calendars",
    "generate_calendar",
    "plan_chunks",
    "plan_gap_chunks",
    "subtract_years",
    "sweep_gaps",
    "us_market_holidays",
]
