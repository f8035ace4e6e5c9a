"""Exception handling module."""

from gapsync.core.exceptions.base import (
    ConfigurationError,
    GapSyncError,
    PersistenceError,
    RateLimitExceeded,
    UpstreamError,
)
from gapsync.core.exceptions.codes import ErrorCode

__all__ = [
    "GapSyncError",
    "UpstreamError",
    "RateLimitExceeded",
    "PersistenceError",
    "ConfigurationError",
    "ErrorCode",
]
