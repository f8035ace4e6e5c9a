"""DuckDB-backed remote control channel."""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

import duckdb

from gapsync.core.data.schema import SERVICE_STATS_TABLE, SYNC_CONTROL_TABLE
from gapsync.core.data.storage import borrow_connection
from gapsync.core.exceptions import PersistenceError
from gapsync.core.interfaces import CommandChannel
from gapsync.core.logging import get_logger
from gapsync.core.models import RemoteCommand

if TYPE_CHECKING:
    from gapsync.core.data.storage import ConnectionSource

logger = get_logger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _load_payload(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        loaded = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return loaded if isinstance(loaded, dict) else {}


_COMMAND_COLUMNS = "id, action, payload, processed, created_at, processed_at, error_message"


def _row_to_command(row: tuple[Any, ...]) -> RemoteCommand:
    command_id, action, payload, processed, created_at, processed_at, error_message = row
    return RemoteCommand(
        id=int(command_id),
        action=str(action),
        payload=_load_payload(payload),
        processed=bool(processed),
        created_at=created_at,
        processed_at=processed_at,
        error_message=error_message,
    )


class DuckDBCommandChannel(CommandChannel):
    """Commands in ``sync_control``; status snapshots appended to ``service_stats``.

    Like :class:`DuckDBRecordStore`, a factory ``source`` gives every call its
    own connection so other processes can reach the file between calls.
    """

    def __init__(self, source: ConnectionSource, *, ensure_schema: bool = True) -> None:
        self._source = source
        if ensure_schema:
            with borrow_connection(source) as conn:
                SYNC_CONTROL_TABLE.ensure(conn)
                SERVICE_STATS_TABLE.ensure(conn)

    async def enqueue(self, action: str, payload: dict[str, Any] | None = None) -> int:
        """Append a command and return its id."""

        try:
            with borrow_connection(self._source) as conn:
                row = conn.execute(
                    f"INSERT INTO {SYNC_CONTROL_TABLE.name} (action, payload) VALUES (?, ?) RETURNING id",
                    [action, json.dumps(payload or {})],
                ).fetchone()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot enqueue command {action}: {exc}", operation="enqueue") from exc
        command_id = int(row[0]) if row else 0
        logger.info(f"enqueued command {command_id} ({action})")
        return command_id

    async def fetch_unprocessed_commands(self, limit: int) -> list[RemoteCommand]:
        try:
            with borrow_connection(self._source) as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_COMMAND_COLUMNS}
                    FROM {SYNC_CONTROL_TABLE.name}
                    WHERE NOT processed
                    ORDER BY created_at ASC, id ASC
                    LIMIT ?
                    """,
                    [limit],
                ).fetchall()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot fetch commands: {exc}", operation="fetch_commands") from exc
        return [_row_to_command(row) for row in rows]

    async def mark_processed(self, command_id: int, error_message: str | None = None) -> None:
        try:
            with borrow_connection(self._source) as conn:
                conn.execute(
                    f"""
                    UPDATE {SYNC_CONTROL_TABLE.name}
                    SET processed = TRUE, processed_at = CURRENT_TIMESTAMP, error_message = ?
                    WHERE id = ? AND NOT processed
                    """,
                    [error_message, command_id],
                )
        except duckdb.Error as exc:
            raise PersistenceError(
                f"cannot mark command {command_id} processed: {exc}", operation="mark_processed"
            ) from exc

    async def publish_status(self, snapshot: dict[str, Any]) -> None:
        try:
            with borrow_connection(self._source) as conn:
                conn.execute(
                    f"INSERT INTO {SERVICE_STATS_TABLE.name} (state, snapshot) VALUES (?, ?)",
                    [str(snapshot.get("state", "UNKNOWN")), json.dumps(snapshot, default=_json_default)],
                )
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot publish status: {exc}", operation="publish_status") from exc

    async def latest_status(self) -> dict[str, Any] | None:
        """Most recently published status snapshot."""

        try:
            with borrow_connection(self._source) as conn:
                row = conn.execute(
                    f"SELECT snapshot FROM {SERVICE_STATS_TABLE.name} ORDER BY created_at DESC, id DESC LIMIT 1"
                ).fetchone()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot read status: {exc}", operation="latest_status") from exc
        return _load_payload(row[0]) if row else None

    async def get_command(self, command_id: int) -> RemoteCommand | None:
        try:
            with borrow_connection(self._source) as conn:
                row = conn.execute(
                    f"SELECT {_COMMAND_COLUMNS} FROM {SYNC_CONTROL_TABLE.name} WHERE id = ?",
                    [command_id],
                ).fetchone()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot read command {command_id}: {exc}", operation="get_command") from exc
        return _row_to_command(row) if row is not None else None


__all__ = ["DuckDBCommandChannel"]
