"""
Retry utilities for rate-limited MyGeotab calls.

Provides:
- Backoff configuration driven by server-supplied retry hints
- A tenacity wait strategy honoring Retry-After with a floor and margin
- A cancellation-aware AsyncRetrying factory
- Logging of retry attempts
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.exceptions import RateLimitedException
from dvirsync.core.logging import get_logger

if TYPE_CHECKING:
    from dvirsync.core.config import Settings

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for rate-limit retry behavior."""

    max_retries: int = 2
    floor_delay: float = 5.0
    safety_margin: float = 0.5
    max_delay: float = 300.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_settings(cls, config: Settings) -> RetryConfig:
        return cls(
            max_retries=config.RATE_LIMIT_MAX_RETRIES,
            floor_delay=config.RATE_LIMIT_FLOOR_SECONDS,
            safety_margin=config.RATE_LIMIT_SAFETY_MARGIN_SECONDS,
        )


DEFAULT_CONFIG = RetryConfig()


def calculate_delay(retry_after: float | None, config: RetryConfig) -> float:
    """
    Calculate the wait before retrying a rate-limited call.

    The server hint is never trusted below the floor, and a small margin is
    added so the retry lands after the window resets.
    """
    delay = max(retry_after or 0.0, config.floor_delay) + config.safety_margin
    return min(delay, config.max_delay)


def is_rate_limit_exception(exception: BaseException) -> tuple[bool, float | None]:
    """
    Check if exception is a rate limit error and extract retry-after.

    Returns:
        Tuple of (is_rate_limit, retry_after_seconds)
    """
    if isinstance(exception, RateLimitedException):
        return True, exception.retry_after
    return False, None


class wait_retry_after(wait_base):
    """Wait strategy reading the retry hint off the last rate-limit error."""

    def __init__(self, config: RetryConfig) -> None:
        self.config = config

    def __call__(self, retry_state: RetryCallState) -> float:
        retry_after = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            _, retry_after = is_rate_limit_exception(retry_state.outcome.exception())
        return calculate_delay(retry_after, self.config)


def _log_before_sleep(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Rate limited, retrying {label}",
            extra={
                "operation": label,
                "attempt": retry_state.attempt_number,
                "delay_seconds": round(delay, 2),
                "error_type": type(exc).__name__ if exc else None,
            },
        )

    return before_sleep


def build_rate_limit_retrying(
    config: RetryConfig = DEFAULT_CONFIG,
    token: CancellationToken | None = None,
    sleep: SleepFunc = asyncio.sleep,
    label: str = "call",
) -> AsyncRetrying:
    """
    Build an AsyncRetrying that retries only rate-limit errors.

    The cancellation token is consulted before each backoff wait; once it
    is cancelled the last error is re-raised instead of sleeping.

    Usage:
        retrying = build_rate_limit_retrying(config, token, label="batch 3")
        results = await retrying(api.multi_call, calls)
    """

    def should_retry(exc: BaseException) -> bool:
        if token is not None and token.cancelled:
            return False
        is_rate_limit, _ = is_rate_limit_exception(exc)
        return is_rate_limit

    return AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_retry_after(config),
        retry=retry_if_exception(should_retry),
        sleep=sleep,
        before_sleep=_log_before_sleep(label),
        reraise=True,
    )
