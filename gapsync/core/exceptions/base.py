"""gapsync core exception classes."""

from __future__ import annotations

from typing import Any

from gapsync.core.exceptions.codes import ErrorCode


class GapSyncError(Exception):
    """Base class for every error raised by gapsync."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | str = ErrorCode.GENERAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        """Initialise the error.

        Args:
            message: human readable message
            error_code: machine readable code
            details: extra context for logs and CLI payloads
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code.value if isinstance(error_code, ErrorCode) else error_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Return a serializable payload representing the error."""

        return {"code": self.error_code, "message": self.message, "details": dict(self.details)}


class UpstreamError(GapSyncError):
    """Transport or parse failure reported by the market-data collaborator."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        status_code: int | None = None,
        error_code: ErrorCode | str = ErrorCode.UPSTREAM_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["provider"] = provider_name
        if status_code is not None:
            super_details["status_code"] = status_code
        super().__init__(message, error_code, super_details)
        self.provider_name = provider_name
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        """Whether the upstream rejected the call for exceeding its quota."""

        if self.status_code == 429:
            return True
        lowered = self.message.lower()
        return "rate" in lowered or "limit" in lowered


class RateLimitExceeded(GapSyncError):
    """Admission denied by the rate limit governor.

    This is a scheduling signal rather than a failure: callers wait for
    ``retry_after`` seconds and try again.
    """

    def __init__(
        self,
        provider_name: str,
        retry_after: float,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["provider"] = provider_name
        super_details["retry_after"] = retry_after
        super().__init__(
            f"rate limit reached for {provider_name}, retry in {retry_after:.1f}s",
            ErrorCode.RATE_LIMIT_EXCEEDED,
            super_details,
        )
        self.provider_name = provider_name
        self.retry_after = retry_after


class PersistenceError(GapSyncError):
    """Read or write failure in the persistence collaborator."""

    def __init__(
        self,
        message: str,
        operation: str,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["operation"] = operation
        super().__init__(message, ErrorCode.PERSISTENCE_ERROR, super_details)
        self.operation = operation


class ConfigurationError(GapSyncError):
    """Invalid or missing settings detected at startup."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if field:
            super_details["field"] = field
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, super_details)
        self.field = field
