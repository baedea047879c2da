"""
Custom exception classes for dvirsync.

This module defines a hierarchy of exceptions with:
- Structured error payloads
- User-facing messages
- Error codes for caller-side handling
"""

from enum import StrEnum
from typing import Any

# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(StrEnum):
    """Standardized error codes for caller-side handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    CONFIGURATION_ERROR = "ERR_1002"
    INVALID_RANGE = "ERR_1003"

    # External API errors (3xxx)
    EXTERNAL_API_ERROR = "ERR_3000"
    GEOTAB_ERROR = "ERR_3001"
    GEOTAB_RATE_LIMITED = "ERR_3002"
    GEOTAB_TIMEOUT = "ERR_3003"

    # Synchronization errors (4xxx)
    BATCH_FAILED = "ERR_4001"
    FETCH_FAILED = "ERR_4002"
    PARTIAL_ENRICHMENT = "ERR_4003"
    CANCELLED = "ERR_4004"


# =============================================================================
# User-facing Messages
# =============================================================================


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INTERNAL_ERROR: "An internal error occurred.",
    ErrorCode.VALIDATION_ERROR: "Invalid input. Please check the supplied values.",
    ErrorCode.CONFIGURATION_ERROR: "The MyGeotab session is not configured.",
    ErrorCode.INVALID_RANGE: "The end of the date range must be after its start.",
    ErrorCode.EXTERNAL_API_ERROR: "External service error. Please try again later.",
    ErrorCode.GEOTAB_ERROR: "MyGeotab returned an error.",
    ErrorCode.GEOTAB_RATE_LIMITED: "MyGeotab rate limit exceeded. Please wait a moment.",
    ErrorCode.GEOTAB_TIMEOUT: "MyGeotab did not respond in time.",
    ErrorCode.BATCH_FAILED: "A batch of requests failed and was skipped.",
    ErrorCode.FETCH_FAILED: "Inspections could not be loaded.",
    ErrorCode.PARTIAL_ENRICHMENT: (
        "Defect details failed to load. Fleet summary is shown without defect counts."
    ),
    ErrorCode.CANCELLED: "The sync was cancelled.",
}


def get_error_message(code: ErrorCode, fallback: str | None = None) -> str:
    """Get the user-facing message for an error code."""
    return ERROR_MESSAGES.get(code, fallback or "An unknown error occurred.")


# =============================================================================
# Base Exception Classes
# =============================================================================


class DvirSyncException(Exception):
    """
    Base exception class for all dvirsync exceptions.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        return get_error_message(self.code, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a JSON-serializable dictionary."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "user_message": self.user_message,
                "details": self.details,
            }
        }


# =============================================================================
# Validation Exceptions
# =============================================================================


class ValidationException(DvirSyncException):
    """Exception for validation errors."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field

        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            details=error_details,
        )


class InvalidRangeException(ValidationException):
    """Raised for a malformed date range, before any remote call is made."""

    def __init__(
        self,
        message: str,
        start: str | None = None,
        end: str | None = None,
    ):
        details = {}
        if start:
            details["from"] = start
        if end:
            details["to"] = end

        super().__init__(
            message=message,
            field="date_range",
            details=details,
        )
        self.code = ErrorCode.INVALID_RANGE


class ConfigurationException(DvirSyncException):
    """Exception for missing or invalid configuration."""

    def __init__(self, message: str, setting: str | None = None):
        details = {"setting": setting} if setting else {}
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
        )


# =============================================================================
# External API Exceptions
# =============================================================================


class ExternalAPIException(DvirSyncException):
    """Base exception for external API errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
        retry_after: float | None = None,
    ):
        error_details = details or {}
        if original_error:
            error_details["original_error"] = str(original_error)
        if retry_after:
            error_details["retry_after_seconds"] = retry_after

        super().__init__(
            message=message,
            code=code,
            details=error_details,
        )
        self.original_error = original_error
        self.retry_after = retry_after


class GeotabApiException(ExternalAPIException):
    """Exception for MyGeotab API errors."""

    def __init__(
        self,
        message: str = "MyGeotab returned an error.",
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
        status_code: int | None = None,
        error_name: str | None = None,
    ):
        error_details = details or {}
        if status_code is not None:
            error_details["status_code"] = status_code
        if error_name:
            error_details["error_name"] = error_name

        super().__init__(
            message=message,
            code=ErrorCode.GEOTAB_ERROR,
            details=error_details,
            original_error=original_error,
        )
        self.status_code = status_code
        self.error_name = error_name


class RateLimitedException(GeotabApiException):
    """The server rejected a call as over its rate limit."""

    def __init__(
        self,
        retry_after: float | None = None,
        message: str | None = None,
    ):
        super().__init__(
            message=message or "MyGeotab rate limit exceeded.",
            status_code=429,
            error_name="OverLimitException",
        )
        self.code = ErrorCode.GEOTAB_RATE_LIMITED
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after_seconds"] = retry_after


class GeotabTimeoutException(GeotabApiException):
    """MyGeotab did not answer within the configured timeout."""

    def __init__(self, timeout: float | None = None, original_error: Exception | None = None):
        super().__init__(
            message="MyGeotab request timed out",
            details={"timeout_seconds": timeout} if timeout is not None else None,
            original_error=original_error,
        )
        self.code = ErrorCode.GEOTAB_TIMEOUT


# =============================================================================
# Synchronization Exceptions
# =============================================================================


class TransientBatchFailure(DvirSyncException):
    """A single batch failed; the run continues without its results."""

    def __init__(
        self,
        batch_index: int,
        attempts: int,
        original_error: Exception | None = None,
    ):
        details: dict[str, Any] = {"batch_index": batch_index, "attempts": attempts}
        if original_error:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__

        super().__init__(
            message=f"Batch {batch_index} failed after {attempts} attempt(s)",
            code=ErrorCode.BATCH_FAILED,
            details=details,
        )
        self.batch_index = batch_index
        self.attempts = attempts
        self.original_error = original_error


class FatalFetchFailure(DvirSyncException):
    """Failure before any usable partial result exists. Aborts the run."""

    def __init__(
        self,
        message: str = "Inspections could not be loaded.",
        phase: str | None = None,
        original_error: Exception | None = None,
    ):
        details: dict[str, Any] = {}
        if phase:
            details["phase"] = phase
        if original_error:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__

        super().__init__(
            message=message,
            code=ErrorCode.FETCH_FAILED,
            details=details,
        )
        self.phase = phase
        self.original_error = original_error


class PartialEnrichmentWarning(DvirSyncException):
    """
    Non-fatal caveat attached to an already produced summary.

    Never raised past the pipeline; carried on the result instead.
    """

    def __init__(
        self,
        message: str | None = None,
        failed_batches: int = 0,
        total_batches: int = 0,
        original_error: Exception | None = None,
    ):
        details: dict[str, Any] = {
            "failed_batches": failed_batches,
            "total_batches": total_batches,
        }
        if original_error:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__

        super().__init__(
            message=message or get_error_message(ErrorCode.PARTIAL_ENRICHMENT),
            code=ErrorCode.PARTIAL_ENRICHMENT,
            details=details,
        )
        self.failed_batches = failed_batches
        self.total_batches = total_batches
        self.original_error = original_error


class OperationCancelled(DvirSyncException):
    """Raised at a dispatch point when the run's token has been cancelled."""

    def __init__(self, reason: str | None = None):
        super().__init__(
            message=f"Operation cancelled: {reason}" if reason else "Operation cancelled",
            code=ErrorCode.CANCELLED,
            details={"reason": reason} if reason else {},
        )
        self.reason = reason
