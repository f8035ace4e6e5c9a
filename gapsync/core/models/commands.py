"""Remote control command models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003
from enum import Enum
from typing import Any


class CommandAction(str, Enum):
    """Actions understood by the remote control poller."""

    START = "START_SYNC"
    STOP = "STOP_SYNC"
    RESTART = "RESTART_SYNC"
    UPDATE_SYMBOLS = "UPDATE_SYMBOLS"
    GET_STATUS = "GET_STATUS"

    @classmethod
    def parse(cls, raw: str) -> CommandAction | None:
        """Resolve an action from its wire value or short alias."""

        normalized = raw.strip().upper()
        for member in cls:
            if normalized in {member.value, member.name}:
                return member
        return None


@dataclass(slots=True)
class RemoteCommand:
    """Instruction read from the control channel."""

    id: int
    action: str
    payload: dict[str, Any] = field(default_factory=dict)
    processed: bool = False
    created_at: datetime | None = None
    processed_at: datetime | None = None
    error_message: str | None = None


__all__ = ["CommandAction", "RemoteCommand"]
