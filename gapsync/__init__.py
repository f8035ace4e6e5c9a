"""gapsync - gap-aware synchronization of daily market data into DuckDB."""

from gapsync.core.exceptions import (
    ConfigurationError,
    GapSyncError,
    PersistenceError,
    RateLimitExceeded,
    UpstreamError,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "GapSyncError",
    "PersistenceError",
    "RateLimitExceeded",
    "UpstreamError",
    "__version__",
]
