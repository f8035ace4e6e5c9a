"""Recurring background tasks with awaited cancellation."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

from gapsync.core.logging import get_logger

logger = get_logger(__name__)


class RecurringTask:
    """Run ``callback`` every ``interval`` seconds until stopped.

    The first tick happens one interval after :meth:`start`. A tick that
    raises is logged and the ticker carries on.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[object]]) -> None:
        if interval <= 0:
            raise ValueError(f"interval for {name} must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the ticker on the running loop; no-op if already running."""

        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"recurring:{self.name}")
        logger.debug(f"recurring task {self.name} armed every {self.interval:.0f}s")

    async def stop(self) -> None:
        """Cancel the ticker and wait until it has finished."""

        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug(f"recurring task {self.name} stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failures += 1
                logger.error(f"recurring task {self.name} failed: {exc}")


__all__ = ["RecurringTask"]
