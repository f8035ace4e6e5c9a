"""DuckDB connection management."""

from gapsync.core.data.storage.duckdb_factory import (
    ConnectionSource,
    DuckDBFactoryConfig,
    GapSyncDuckDBFactory,
    borrow_connection,
)

__all__ = ["ConnectionSource", "DuckDBFactoryConfig", "GapSyncDuckDBFactory", "borrow_connection"]
