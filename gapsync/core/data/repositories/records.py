"""DuckDB-backed record store."""

from __future__ import annotations

import contextlib
from collections.abc import Sequence
from datetime import date
from typing import TYPE_CHECKING, Any

import duckdb

from gapsync.core.data.schema import STOCK_DATA_TABLE
from gapsync.core.data.storage import borrow_connection
from gapsync.core.exceptions import PersistenceError
from gapsync.core.interfaces import RecordStore
from gapsync.core.logging import get_logger
from gapsync.core.models import DataRecord

if TYPE_CHECKING:
    from gapsync.core.data.storage import ConnectionSource

logger = get_logger(__name__)

_COLUMNS = "symbol, date, open, high, low, close, adjusted_close, volume"


def _row_to_record(row: tuple[Any, ...]) -> DataRecord:
    symbol, day, open_, high, low, close, adjusted_close, volume = row
    return DataRecord(
        symbol=str(symbol),
        date=day,
        open=float(open_),
        high=float(high),
        low=float(low),
        close=float(close),
        adjusted_close=None if adjusted_close is None else float(adjusted_close),
        volume=int(volume or 0),
    )


class DuckDBRecordStore(RecordStore):
    """Stores daily bars in the ``stock_data`` table keyed by ``(symbol, date)``.

    ``source`` is either a shared connection or a factory; with a factory each
    operation opens and closes its own connection.
    """

    def __init__(self, source: ConnectionSource, *, ensure_schema: bool = True) -> None:
        self._source = source
        if ensure_schema:
            with borrow_connection(source) as conn:
                STOCK_DATA_TABLE.ensure(conn)

    async def read_records(self, symbol: str, from_date: date, to_date: date) -> list[DataRecord]:
        try:
            with borrow_connection(self._source) as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM {STOCK_DATA_TABLE.name}
                    WHERE symbol = ? AND date BETWEEN ? AND ?
                    ORDER BY date DESC
                    """,
                    [symbol, from_date, to_date],
                ).fetchall()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot read records for {symbol}: {exc}", operation="read_records") from exc
        return [_row_to_record(row) for row in rows]

    async def upsert_records(self, records: Sequence[DataRecord]) -> int:
        if not records:
            return 0

        # last record wins for a repeated (symbol, date)
        latest = {record.key: record for record in records}
        rows = [
            [
                record.symbol,
                record.date,
                record.open,
                record.high,
                record.low,
                record.close,
                record.adjusted_close,
                record.volume,
            ]
            for record in latest.values()
        ]
        with borrow_connection(self._source) as conn:
            try:
                conn.begin()
                conn.executemany(
                    f"""
                    INSERT OR REPLACE INTO {STOCK_DATA_TABLE.name} ({_COLUMNS}, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    rows,
                )
                conn.commit()
            except duckdb.Error as exc:
                with contextlib.suppress(duckdb.Error):
                    conn.rollback()
                raise PersistenceError(
                    f"cannot upsert {len(rows)} records: {exc}", operation="upsert_records"
                ) from exc

        logger.debug(f"upserted {len(rows)} records")
        return len(rows)

    async def read_oldest_record(self, symbol: str) -> DataRecord | None:
        try:
            with borrow_connection(self._source) as conn:
                row = conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM {STOCK_DATA_TABLE.name}
                    WHERE symbol = ?
                    ORDER BY date ASC
                    LIMIT 1
                    """,
                    [symbol],
                ).fetchone()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot read oldest record for {symbol}: {exc}", operation="read_oldest") from exc
        return _row_to_record(row) if row is not None else None

    async def count_records(self, symbol: str | None = None) -> int:
        """Number of stored rows, optionally for one symbol."""

        query = f"SELECT COUNT(*) FROM {STOCK_DATA_TABLE.name}"
        params: list[Any] = []
        if symbol is not None:
            query += " WHERE symbol = ?"
            params.append(symbol)
        try:
            with borrow_connection(self._source) as conn:
                row = conn.execute(query, params).fetchone()
        except duckdb.Error as exc:
            raise PersistenceError(f"cannot count records: {exc}", operation="count_records") from exc
        return int(row[0]) if row else 0


__all__ = ["DuckDBRecordStore"]
