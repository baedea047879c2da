# Core module
"""
Core module for dvirsync.

This module provides:
- Configuration management (config.py)
- Custom exceptions with error codes (exceptions.py)
- Structured logging (logging.py)
- Cooperative cancellation (cancellation.py)
- Rate-limit retry utilities (retry.py)
"""

from dvirsync.core.config import settings, get_settings
from dvirsync.core.exceptions import (
    # Base exceptions
    DvirSyncException,
    ValidationException,
    InvalidRangeException,
    ConfigurationException,
    # External API exceptions
    ExternalAPIException,
    GeotabApiException,
    GeotabTimeoutException,
    RateLimitedException,
    # Synchronization exceptions
    TransientBatchFailure,
    FatalFetchFailure,
    PartialEnrichmentWarning,
    OperationCancelled,
    # Error codes
    ErrorCode,
    get_error_message,
)
from dvirsync.core.logging import (
    setup_logging,
    get_logger,
    log_event,
    log_external_api_call,
    PerformanceLogger,
)
from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.retry import (
    RetryConfig,
    DEFAULT_CONFIG,
    build_rate_limit_retrying,
    calculate_delay,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Exceptions
    "DvirSyncException",
    "ValidationException",
    "InvalidRangeException",
    "ConfigurationException",
    "ExternalAPIException",
    "GeotabApiException",
    "GeotabTimeoutException",
    "RateLimitedException",
    "TransientBatchFailure",
    "FatalFetchFailure",
    "PartialEnrichmentWarning",
    "OperationCancelled",
    "ErrorCode",
    "get_error_message",
    # Logging
    "setup_logging",
    "get_logger",
    "log_event",
    "log_external_api_call",
    "PerformanceLogger",
    # Cancellation
    "CancellationToken",
    # Retry
    "RetryConfig",
    "DEFAULT_CONFIG",
    "build_rate_limit_retrying",
    "calculate_delay",
]
