"""
Rate-limited batch execution.

Runs an ordered list of API calls as a sequence of ExecuteMultiCall
batches, one batch in flight at a time, with a pause between batches and
bounded retries on rate-limit errors. A batch that still fails is dropped
and counted; the run carries on with the next one.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, List, Optional, TypeVar

from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.exceptions import OperationCancelled, TransientBatchFailure
from dvirsync.core.logging import get_logger
from dvirsync.core.retry import DEFAULT_CONFIG, RetryConfig, SleepFunc, build_rate_limit_retrying
from dvirsync.services.geotab_client import ApiCall, InspectionApi

logger = get_logger(__name__)

T = TypeVar("T")

BatchProgressCallback = Callable[[int, int], None]


@dataclass
class BatchOutcome:
    """What a batcher run produced."""

    results: List[Any] = field(default_factory=list)
    total_batches: int = 0
    completed_batches: int = 0
    failed_batches: int = 0
    cancelled: bool = False
    failures: List[TransientBatchFailure] = field(default_factory=list)


def partition(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive groups of ``size`` (the last may be shorter)."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def first_of_singleton(result: Any) -> Optional[Any]:
    """Unwrap a point-query result: a non-empty list yields its first item."""
    if isinstance(result, list) and result:
        return result[0]
    return None


class RateLimitedBatcher:
    """
    Sequential, paced executor for multi-call batches.

    Never dispatches two batches concurrently; serial pacing is what keeps
    the run under the server's calls-per-minute ceiling.
    """

    def __init__(
        self,
        api: InspectionApi,
        retry_config: RetryConfig = DEFAULT_CONFIG,
        token: Optional[CancellationToken] = None,
        sleep: SleepFunc = asyncio.sleep,
        unwrap: Callable[[Any], Optional[Any]] = first_of_singleton,
    ):
        self._api = api
        self._retry_config = retry_config
        self._token = token
        self._sleep = sleep
        self._unwrap = unwrap

    def _cancelled(self) -> bool:
        return self._token is not None and self._token.cancelled

    async def run(
        self,
        operations: Sequence[ApiCall],
        batch_size: int,
        inter_batch_delay: float,
        on_batch_done: Optional[BatchProgressCallback] = None,
    ) -> BatchOutcome:
        """
        Execute ``operations`` in batches of ``batch_size``.

        Args:
            operations: Calls to execute, in order
            batch_size: Calls per ExecuteMultiCall
            inter_batch_delay: Seconds to pause before every batch but the first
            on_batch_done: Called with (completed, total) after each batch,
                whether it succeeded or exhausted its retries

        Returns:
            BatchOutcome with the unwrapped, non-empty results in batch order
        """
        batches = partition(operations, batch_size)
        outcome = BatchOutcome(total_batches=len(batches))

        for index, batch in enumerate(batches):
            if self._cancelled():
                outcome.cancelled = True
                break

            if index > 0 and inter_batch_delay > 0:
                await self._sleep(inter_batch_delay)
                if self._cancelled():
                    outcome.cancelled = True
                    break

            try:
                results = await self._dispatch(batch, index)
            except OperationCancelled:
                outcome.cancelled = True
                break
            except TransientBatchFailure as failure:
                if self._cancelled():
                    outcome.cancelled = True
                    break
                outcome.failed_batches += 1
                outcome.failures.append(failure)
                logger.warning(
                    f"Batch {index + 1}/{len(batches)} failed, skipping",
                    extra={
                        "batch_index": index,
                        "batch_size": len(batch),
                        "attempts": failure.attempts,
                        "error_type": failure.details.get("error_type"),
                    },
                )
            else:
                for result in results:
                    item = self._unwrap(result)
                    if item is not None:
                        outcome.results.append(item)

            outcome.completed_batches += 1
            if on_batch_done:
                on_batch_done(outcome.completed_batches, outcome.total_batches)

        if outcome.failed_batches:
            logger.warning(
                f"{outcome.failed_batches} of {outcome.total_batches} batches failed",
                extra={"failed_batches": outcome.failed_batches, "total_batches": outcome.total_batches},
            )
        return outcome

    async def _dispatch(self, batch: List[ApiCall], index: int) -> List[Any]:
        """
        Send one batch, retrying rate-limit errors.

        Raises:
            OperationCancelled: The token was cancelled before a dispatch
            TransientBatchFailure: Retries exhausted or a non-retryable error
        """
        attempts = 0

        async def attempt() -> List[Any]:
            nonlocal attempts
            if self._token is not None:
                self._token.raise_if_cancelled()
            attempts += 1
            return await self._api.multi_call(batch)

        retrying = build_rate_limit_retrying(
            self._retry_config,
            token=self._token,
            sleep=self._sleep,
            label=f"batch {index + 1}",
        )
        try:
            results = await retrying(attempt)
        except OperationCancelled:
            raise
        except Exception as e:
            raise TransientBatchFailure(index, attempts, original_error=e) from e

        return results if isinstance(results, list) else []
