"""Remote control of the orchestrator through a polled command channel."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gapsync.core.exceptions import ErrorCode, GapSyncError
from gapsync.core.logging import get_logger, log_context
from gapsync.core.models import CommandAction
from gapsync.core.services.scheduler import RecurringTask

if TYPE_CHECKING:
    from gapsync.core.interfaces import CommandChannel
    from gapsync.core.models import RemoteCommand
    from gapsync.core.services.sync import SyncOrchestrator

logger = get_logger(__name__)


class UnknownCommandError(GapSyncError):
    """Raised for command actions the poller does not understand."""

    def __init__(self, action: str) -> None:
        super().__init__(f"unknown command action '{action}'", ErrorCode.UNKNOWN_COMMAND, {"action": action})
        self.action = action


class RemoteControlPoller:
    """Fetches unprocessed commands and dispatches them to the orchestrator.

    Every fetched command is marked processed exactly once, with an error
    message when the action is unknown or its dispatch failed.
    """

    def __init__(
        self,
        channel: CommandChannel,
        orchestrator: SyncOrchestrator,
        interval: float = 120.0,
        batch_size: int = 5,
    ) -> None:
        self._channel = channel
        self._orchestrator = orchestrator
        self._batch_size = batch_size
        self._ticker = RecurringTask("control-poll", interval, self._tick)
        self.processed = 0

    @property
    def is_running(self) -> bool:
        return self._ticker.is_running

    def start(self) -> None:
        self._ticker.start()
        logger.info(f"remote control polling every {self._ticker.interval:.0f}s")

    async def stop(self) -> None:
        await self._ticker.stop()

    async def _tick(self) -> None:
        try:
            await self.poll_once()
        except Exception as exc:
            logger.error(f"remote control poll failed: {exc}")

    async def poll_once(self) -> int:
        """Process one batch of commands, returning how many were handled."""

        commands = await self._channel.fetch_unprocessed_commands(self._batch_size)
        for command in commands:
            with log_context(command_id=command.id, action=command.action):
                error_message: str | None = None
                try:
                    await self.dispatch(command)
                except Exception as exc:
                    error_message = str(exc)
                    logger.warning(f"command {command.id} ({command.action}) failed: {exc}")
                else:
                    logger.info(f"command {command.id} ({command.action}) executed")
                await self._channel.mark_processed(command.id, error_message)
                self.processed += 1
        return len(commands)

    async def dispatch(self, command: RemoteCommand) -> None:
        action = CommandAction.parse(command.action)
        if action is None:
            raise UnknownCommandError(command.action)

        if action is CommandAction.START:
            await self._orchestrator.start()
        elif action is CommandAction.STOP:
            await self._orchestrator.stop()
        elif action is CommandAction.RESTART:
            await self._orchestrator.restart()
        elif action is CommandAction.UPDATE_SYMBOLS:
            self._orchestrator.update_symbols(_payload_symbols(command.payload))
        elif action is CommandAction.GET_STATUS:
            await self._channel.publish_status(self._orchestrator.status().to_dict())


def _payload_symbols(payload: dict[str, Any]) -> list[str]:
    symbols = payload.get("symbols")
    if isinstance(symbols, str):
        symbols = symbols.split(",")
    if not isinstance(symbols, list) or not symbols:
        raise ValueError("UPDATE_SYMBOLS requires a non-empty 'symbols' list")
    return [str(symbol) for symbol in symbols]


__all__ = ["RemoteControlPoller", "UnknownCommandError"]
