"""Data access: DuckDB schema, storage, repositories and providers."""
