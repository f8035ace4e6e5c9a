"""Standardized error codes for gapsync exceptions."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes carried by every :class:`GapSyncError`."""

    GENERAL_ERROR = "GENERAL_ERROR"

    # Upstream market data
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_HTTP_ERROR = "UPSTREAM_HTTP_ERROR"
    UPSTREAM_PAYLOAD_ERROR = "UPSTREAM_PAYLOAD_ERROR"

    # Admission control
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Storage
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"

    # Startup
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Remote control
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"


__all__ = ["ErrorCode"]
