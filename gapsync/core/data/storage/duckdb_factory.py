"""Factory for configured DuckDB connections."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Union

import duckdb

from gapsync.core.exceptions import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from duckdb import DuckDBPyConnection


@dataclass(frozen=True)
class DuckDBFactoryConfig:
    """Configuration applied to DuckDB connections produced by the factory.

    ``lock_timeout`` is how long opening a file database keeps retrying while
    another process holds its lock.
    """

    database: str | Path = ":memory:"
    read_only: bool = False
    pragmas: Mapping[str, object] = field(default_factory=lambda: {"threads": 1})
    lock_timeout: float = 0.0
    lock_retry_interval: float = 0.05


def _is_lock_conflict(exc: duckdb.Error) -> bool:
    return isinstance(exc, duckdb.IOException) and "lock" in str(exc).lower()


class GapSyncDuckDBFactory:
    """Factory that yields configured DuckDB connections."""

    def __init__(self, config: DuckDBFactoryConfig | None = None) -> None:
        self._config = config or DuckDBFactoryConfig()

    @property
    def database(self) -> str:
        return str(self._config.database)

    def create_connection(self) -> DuckDBPyConnection:
        """Create and return a configured DuckDB connection.

        The parent directory of a file database is created on demand. While
        another process holds the file, the open is retried for up to
        ``lock_timeout`` seconds.
        """

        database = self.database
        if database != ":memory:":
            Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            database = str(Path(database).expanduser())

        deadline = time.monotonic() + self._config.lock_timeout
        while True:
            try:
                conn = duckdb.connect(database=database, read_only=self._config.read_only)
                break
            except duckdb.Error as exc:
                if not _is_lock_conflict(exc) or time.monotonic() >= deadline:
                    raise PersistenceError(f"cannot open database {database}: {exc}", operation="connect") from exc
                time.sleep(self._config.lock_retry_interval)
        self._apply_pragmas(conn)
        return conn

    @contextmanager
    def connection(self) -> Iterator[DuckDBPyConnection]:
        """Context manager that yields a configured DuckDB connection."""

        conn = self.create_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _apply_pragmas(self, conn: DuckDBPyConnection) -> None:
        for setting, value in self._config.pragmas.items():
            if isinstance(value, int | float) and not isinstance(value, bool):
                literal = str(value)
            else:
                literal = "'" + str(value).replace("'", "''") + "'"
            conn.execute(f"SET {setting}={literal}")


# A shared connection, or a factory opened once per operation.
ConnectionSource = Union["DuckDBPyConnection", GapSyncDuckDBFactory]


@contextmanager
def borrow_connection(source: ConnectionSource) -> Iterator[DuckDBPyConnection]:
    """Yield ``source`` itself, or a short-lived connection when it is a factory.

    A factory-backed connection is closed on exit, which releases the file
    lock for other processes.
    """

    if isinstance(source, GapSyncDuckDBFactory):
        with source.connection() as conn:
            yield conn
    else:
        yield source


__all__ = ["ConnectionSource", "DuckDBFactoryConfig", "GapSyncDuckDBFactory", "borrow_connection"]
