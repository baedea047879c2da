"""
Driver identity resolution.

Turns driver and repair-performer ids into display identities, fetching
only what the fleet context does not already hold.
"""

import asyncio
from collections.abc import Iterable
from typing import List, Optional

from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.logging import get_logger
from dvirsync.core.retry import DEFAULT_CONFIG, RetryConfig, SleepFunc
from dvirsync.schemas.inspection import UNKNOWN_DRIVER_ID, DriverIdentity
from dvirsync.services.batcher import BatchOutcome, RateLimitedBatcher
from dvirsync.services.fleet_context import FleetContext
from dvirsync.services.geotab_client import InspectionApi, get_by_id_call

logger = get_logger(__name__)


class EntityResolver:
    """Deduplicating, cache-aware resolver for User entities."""

    def __init__(
        self,
        api: InspectionApi,
        context: FleetContext,
        batch_size: int = 50,
        inter_batch_delay: float = 0.0,
        retry_config: RetryConfig = DEFAULT_CONFIG,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._api = api
        self._context = context
        self._batch_size = batch_size
        self._inter_batch_delay = inter_batch_delay
        self._retry_config = retry_config
        self._sleep = sleep

    def pending(self, identifiers: Iterable[Optional[str]]) -> List[str]:
        """Ids not yet cached, deduplicated in first-seen order."""
        seen = set()
        missing = []
        for identifier in identifiers:
            if not identifier or identifier == UNKNOWN_DRIVER_ID:
                continue
            if identifier in seen or self._context.has_driver(identifier):
                continue
            seen.add(identifier)
            missing.append(identifier)
        return missing

    async def resolve(
        self,
        identifiers: Iterable[Optional[str]],
        token: Optional[CancellationToken] = None,
    ) -> BatchOutcome:
        """
        Resolve ids into the fleet context's driver cache.

        Makes no remote call when every id is already cached. Entries that
        are already cached are never replaced.

        Returns:
            BatchOutcome whose results are the newly cached identities
        """
        missing = self.pending(identifiers)
        if not missing:
            return BatchOutcome()

        batcher = RateLimitedBatcher(
            self._api,
            retry_config=self._retry_config,
            token=token,
            sleep=self._sleep,
        )
        outcome = await batcher.run(
            [get_by_id_call("User", identifier) for identifier in missing],
            batch_size=self._batch_size,
            inter_batch_delay=self._inter_batch_delay,
        )

        added = []
        for raw in outcome.results:
            driver = DriverIdentity.from_api(raw)
            if driver is not None and self._context.add_driver(driver):
                added.append(driver)
        outcome.results = added

        logger.info(
            f"Resolved {len(added)} of {len(missing)} driver identities",
            extra={
                "requested": len(missing),
                "resolved": len(added),
                "failed_batches": outcome.failed_batches,
            },
        )
        return outcome
