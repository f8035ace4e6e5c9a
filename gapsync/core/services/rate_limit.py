"""Sliding-window admission control for upstream API calls."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from gapsync.core.exceptions import ConfigurationError, RateLimitExceeded
from gapsync.core.logging import get_logger

logger = get_logger(__name__)

HOUR_WINDOW = 3600.0
DAY_WINDOW = 86400.0


@dataclass(frozen=True)
class RateLimitConfig:
    """Call caps for one provider. Delays are in seconds."""

    max_calls_per_hour: int
    max_calls_per_day: int
    min_delay_between_calls: float = 0.0

    def __post_init__(self) -> None:
        if self.max_calls_per_hour <= 0:
            raise ConfigurationError("max_calls_per_hour must be positive", field="max_calls_per_hour")
        if self.max_calls_per_day <= 0:
            raise ConfigurationError("max_calls_per_day must be positive", field="max_calls_per_day")
        if self.min_delay_between_calls < 0:
            raise ConfigurationError("min_delay_between_calls cannot be negative", field="min_delay_between_calls")


@dataclass
class RateLimitState:
    """Call ledger for one provider."""

    calls: deque[float] = field(default_factory=deque)
    last_call_time: float | None = None


class RateLimitGovernor:
    """Answers "may I call now" and "how long until I may" per provider.

    The ledger keeps call timestamps for the longest window (24 hours) and is
    pruned every time it is consulted.
    """

    def __init__(
        self,
        limits: Mapping[str, RateLimitConfig],
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._limits = dict(limits)
        self._states = {provider: RateLimitState() for provider in self._limits}
        self._clock = clock or time.monotonic

    @property
    def providers(self) -> list[str]:
        return list(self._limits)

    def _config(self, provider: str) -> RateLimitConfig:
        try:
            return self._limits[provider]
        except KeyError:
            raise ConfigurationError(f"no rate limit configured for provider '{provider}'", field=provider) from None

    def _prune(self, provider: str, now: float) -> RateLimitState:
        state = self._states[provider]
        cutoff = now - DAY_WINDOW
        while state.calls and state.calls[0] <= cutoff:
            state.calls.popleft()
        return state

    @staticmethod
    def _calls_since(state: RateLimitState, start: float) -> int:
        return sum(1 for stamp in state.calls if stamp > start)

    def can_make_request(self, provider: str) -> bool:
        """Whether a call is admitted right now."""

        limit = self._config(provider)
        now = self._clock()
        state = self._prune(provider, now)

        if state.last_call_time is not None and now - state.last_call_time < limit.min_delay_between_calls:
            return False

        calls_last_hour = self._calls_since(state, now - HOUR_WINDOW)
        calls_last_day = len(state.calls)
        allowed = calls_last_hour < limit.max_calls_per_hour and calls_last_day < limit.max_calls_per_day
        if not allowed:
            logger.debug(
                f"rate limit check {provider}: {calls_last_hour}/{limit.max_calls_per_hour} hour, "
                f"{calls_last_day}/{limit.max_calls_per_day} day"
            )
        return allowed

    def record_api_call(self, provider: str) -> None:
        """Append the current time to the provider's ledger."""

        self._config(provider)
        now = self._clock()
        state = self._prune(provider, now)
        state.calls.append(now)
        state.last_call_time = now

    def get_wait_time(self, provider: str) -> float:
        """Seconds until :meth:`can_make_request` may admit a call, never negative."""

        limit = self._config(provider)
        now = self._clock()
        state = self._prune(provider, now)

        min_wait = 0.0
        if state.last_call_time is not None:
            min_wait = state.last_call_time + limit.min_delay_between_calls - now

        hourly_wait = 0.0
        hour_calls = [stamp for stamp in state.calls if stamp > now - HOUR_WINDOW]
        if len(hour_calls) >= limit.max_calls_per_hour:
            hourly_wait = hour_calls[-limit.max_calls_per_hour] + HOUR_WINDOW - now

        daily_wait = 0.0
        if len(state.calls) >= limit.max_calls_per_day:
            daily_wait = state.calls[-limit.max_calls_per_day] + DAY_WINDOW - now

        return max(min_wait, hourly_wait, daily_wait, 0.0)

    def acquire(self, provider: str) -> None:
        """Record a call if admitted, otherwise raise :class:`RateLimitExceeded`."""

        if not self.can_make_request(provider):
            raise RateLimitExceeded(provider, self.get_wait_time(provider))
        self.record_api_call(provider)

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every provider's ledger."""

        status: dict[str, dict[str, Any]] = {}
        for provider, limit in self._limits.items():
            now = self._clock()
            state = self._prune(provider, now)
            status[provider] = {
                "calls_last_hour": self._calls_since(state, now - HOUR_WINDOW),
                "calls_last_day": len(state.calls),
                "max_hour": limit.max_calls_per_hour,
                "max_day": limit.max_calls_per_day,
                "min_delay": limit.min_delay_between_calls,
                "can_make_request": self.can_make_request(provider),
                "wait_time": self.get_wait_time(provider),
                "time_since_last_call": None if state.last_call_time is None else now - state.last_call_time,
            }
        return status


__all__ = [
    "DAY_WINDOW",
    "HOUR_WINDOW",
    "RateLimitConfig",
    "RateLimitGovernor",
    "RateLimitState",
]
