"""Remote control commands writing to the command channel."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer

from gapsync.app import open_storage
from gapsync.core.config import GapSyncConfig
from gapsync.core.data.repositories import DuckDBCommandChannel
from gapsync.core.exceptions import GapSyncError
from gapsync.core.models import CommandAction

from .constants import RUNTIME_EXIT_CODE
from .utils import emit_error, load_config, prepare_output, split_symbols

COMMAND_COLUMNS = ["id", "action", "payload"]
STATUS_COLUMNS = ["state", "is_running", "processed_symbols", "successful_symbols", "records_added", "last_pass_at"]


def register(app: typer.Typer) -> None:
    app.command("command")(command_command)
    app.command("status")(status_command)


@contextmanager
def open_channel(config: GapSyncConfig) -> Iterator[DuckDBCommandChannel]:
    """Yield a command channel on the configured database.

    Each call opens the file briefly, waiting out a running service that
    holds it at that moment.
    """

    yield DuckDBCommandChannel(open_storage(config))


def command_command(
    ctx: typer.Context,
    action: str = typer.Argument(..., help="START_SYNC, STOP_SYNC, RESTART_SYNC, UPDATE_SYMBOLS or GET_STATUS."),
    symbols: list[str] = typer.Option(None, "--symbols", "-s", help="Symbols for UPDATE_SYMBOLS."),
) -> None:
    """Queue a command for the running service."""

    resolved = CommandAction.parse(action)
    if resolved is None:
        allowed = ", ".join(member.value for member in CommandAction)
        raise typer.BadParameter(f"Unsupported action '{action}'. Allowed values: {allowed}", param_hint="ACTION")

    payload: dict[str, Any] = {}
    if resolved is CommandAction.UPDATE_SYMBOLS:
        requested = split_symbols(symbols or [])
        if not requested:
            raise typer.BadParameter("UPDATE_SYMBOLS needs at least one symbol", param_hint="--symbols")
        payload["symbols"] = requested

    config = load_config(ctx)
    formatter, stream, stack = prepare_output(ctx)
    try:
        with open_channel(config) as channel:
            command_id = asyncio.run(channel.enqueue(resolved.value, payload))
        formatter.render(
            [{"id": command_id, "action": resolved.value, "payload": payload}],
            stream=stream,
            columns=COMMAND_COLUMNS,
        )
    except GapSyncError as exc:
        emit_error(exc.message, exc.error_code, details=exc.details)
        raise typer.Exit(code=RUNTIME_EXIT_CODE) from exc
    finally:
        stack.close()


def status_command(ctx: typer.Context) -> None:
    """Show the last status snapshot published by the service."""

    config = load_config(ctx)
    formatter, stream, stack = prepare_output(ctx)
    try:
        with open_channel(config) as channel:
            snapshot = asyncio.run(channel.latest_status())
        rows = [snapshot] if snapshot else []
        formatter.render(rows, stream=stream, columns=STATUS_COLUMNS)
    except GapSyncError as exc:
        emit_error(exc.message, exc.error_code, details=exc.details)
        raise typer.Exit(code=RUNTIME_EXIT_CODE) from exc
    finally:
        stack.close()


__all__ = ["command_command", "open_channel", "register", "status_command"]
