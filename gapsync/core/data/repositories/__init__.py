"""Persistence and control channel implementations."""

from gapsync.core.data.repositories.commands import DuckDBCommandChannel
from gapsync.core.data.repositories.records import DuckDBRecordStore

__all__ = ["DuckDBCommandChannel", "DuckDBRecordStore"]
