"""DuckDB table definitions for records, remote commands and published status."""

from __future__ import annotations

from collections.abc import Iterable, Sequence  # noqa: TC003
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


@dataclass(frozen=True)
class ColumnDef:
    """Represents a DuckDB table column definition."""

    name: str
    data_type: str
    constraints: Sequence[str] = ()

    def render(self) -> str:
        parts = [self.name, self.data_type, *self.constraints]
        return " ".join(parts)


@dataclass(frozen=True)
class TableSchema:
    """Utility wrapper describing a DuckDB table schema."""

    name: str
    columns: Sequence[ColumnDef]
    primary_key: Sequence[str] = ()
    sequences: Sequence[str] = ()

    def create_ddl(self) -> str:
        column_defs: list[str] = [column.render() for column in self.columns]
        if self.primary_key:
            pk_cols = ", ".join(self.primary_key)
            column_defs.append(f"PRIMARY KEY ({pk_cols})")
        columns_sql = ",\n                ".join(column_defs)
        return f"""
            CREATE TABLE IF NOT EXISTS {self.name} (
                {columns_sql}
            )
            """.strip()

    def ensure(self, conn: DuckDBPyConnection) -> None:
        """Create the table, and any sequence it draws ids from, if missing."""

        for sequence in self.sequences:
            conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence}")
        conn.execute(self.create_ddl())


STOCK_DATA_TABLE = TableSchema(
    name="stock_data",
    columns=(
        ColumnDef("symbol", "VARCHAR", ("NOT NULL",)),
        ColumnDef("date", "DATE", ("NOT NULL",)),
        ColumnDef("open", "DOUBLE", ("NOT NULL",)),
        ColumnDef("high", "DOUBLE", ("NOT NULL",)),
        ColumnDef("low", "DOUBLE", ("NOT NULL",)),
        ColumnDef("close", "DOUBLE", ("NOT NULL",)),
        ColumnDef("adjusted_close", "DOUBLE"),
        ColumnDef("volume", "BIGINT"),
        ColumnDef("updated_at", "TIMESTAMP", ("DEFAULT CURRENT_TIMESTAMP",)),
    ),
    primary_key=("symbol", "date"),
)

SYNC_CONTROL_TABLE = TableSchema(
    name="sync_control",
    columns=(
        ColumnDef("id", "BIGINT", ("DEFAULT nextval('sync_control_id_seq')",)),
        ColumnDef("action", "VARCHAR", ("NOT NULL",)),
        ColumnDef("payload", "JSON"),
        ColumnDef("processed", "BOOLEAN", ("NOT NULL", "DEFAULT FALSE")),
        ColumnDef("created_at", "TIMESTAMP", ("NOT NULL", "DEFAULT CURRENT_TIMESTAMP")),
        ColumnDef("processed_at", "TIMESTAMP"),
        ColumnDef("error_message", "VARCHAR"),
    ),
    primary_key=("id",),
    sequences=("sync_control_id_seq",),
)

SERVICE_STATS_TABLE = TableSchema(
    name="service_stats",
    columns=(
        ColumnDef("id", "BIGINT", ("DEFAULT nextval('service_stats_id_seq')",)),
        ColumnDef("state", "VARCHAR", ("NOT NULL",)),
        ColumnDef("snapshot", "JSON", ("NOT NULL",)),
        ColumnDef("created_at", "TIMESTAMP", ("NOT NULL", "DEFAULT CURRENT_TIMESTAMP")),
    ),
    primary_key=("id",),
    sequences=("service_stats_id_seq",),
)


def gapsync_tables() -> Sequence[TableSchema]:
    """Return every table the service reads or writes."""

    return (STOCK_DATA_TABLE, SYNC_CONTROL_TABLE, SERVICE_STATS_TABLE)


def ensure_gapsync_tables(conn: DuckDBPyConnection) -> None:
    """Create all gapsync tables on the provided DuckDB connection."""

    for table in gapsync_tables():
        table.ensure(conn)


def create_gapsync_ddl() -> Iterable[str]:
    """Yield CREATE TABLE statements for every gapsync table."""

    for table in gapsync_tables():
        yield table.create_ddl()


__all__ = [
    "SERVICE_STATS_TABLE",
    "STOCK_DATA_TABLE",
    "SYNC_CONTROL_TABLE",
    "ColumnDef",
    "TableSchema",
    "create_gapsync_ddl",
    "ensure_gapsync_tables",
    "gapsync_tables",
]
