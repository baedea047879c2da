"""
Progressive DVIR synchronization.

A run moves through fixed phases:

    idle -> fetching_stubs -> resolving_early_drivers -> enriching_detail
         -> resolving_late_drivers -> aggregating -> done

with terminal ``cancelled`` (from any non-terminal phase) and ``failed``
(from the fetch and resolve phases before the first result). A summary
built from stubs is published before detail enrichment starts; anything
that goes wrong after that point downgrades to a warning on the final
result instead of a failure.

SyncSession owns the run lifecycle: starting a run cancels the one in
flight, and closing the session cancels the current run.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from typing import Any, Dict, List, Optional

from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.config import Settings, settings as default_settings
from dvirsync.core.exceptions import (
    DvirSyncException,
    FatalFetchFailure,
    InvalidRangeException,
    OperationCancelled,
    PartialEnrichmentWarning,
)
from dvirsync.core.logging import PerformanceLogger, get_logger, log_event, sync_run_id_var
from dvirsync.core.retry import RetryConfig, SleepFunc, build_rate_limit_retrying
from dvirsync.schemas.inspection import EntityRef, InspectionRecord
from dvirsync.schemas.sync import (
    CancelledEvent,
    DateChunk,
    DateRange,
    FailureEvent,
    FinalResultEvent,
    IntermediateResultEvent,
    ProgressEvent,
    SyncEvent,
    SyncOutcome,
    SyncResult,
    SyncState,
    VehicleFilter,
)
from dvirsync.services.aggregator import compute_kpis, detail, summarize
from dvirsync.services.batcher import RateLimitedBatcher
from dvirsync.services.chunker import chunk_date_range
from dvirsync.services.entity_resolver import EntityResolver
from dvirsync.services.fleet_context import FleetContext, load_foundation
from dvirsync.services.geotab_client import InspectionApi, get_by_id_call, get_call

logger = get_logger(__name__)

EventCallback = Callable[[SyncEvent], None]


def _partial_message(failed: int, total: int) -> str:
    return (
        f"{failed} of {total} request batches failed. "
        "Some defect details or driver names may be missing."
    )


class SyncPipeline:
    """
    Executes one synchronization run.

    A pipeline instance is used for a single run; SyncSession creates a new
    one for every start_sync.
    """

    def __init__(
        self,
        api: InspectionApi,
        context: FleetContext,
        config: Optional[Settings] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._api = api
        self._context = context
        self._config = config or default_settings
        self._sleep = sleep
        self._retry_config = RetryConfig.from_settings(self._config)
        self._resolver = EntityResolver(
            api,
            context,
            batch_size=self._config.DRIVER_BATCH_SIZE,
            inter_batch_delay=self._config.DRIVER_BATCH_DELAY_SECONDS,
            retry_config=self._retry_config,
            sleep=sleep,
        )

        self.state = SyncState.IDLE
        self._token = CancellationToken()
        self._on_event: Optional[EventCallback] = None
        self._vehicle_filter: Optional[VehicleFilter] = None
        self._outcome = SyncOutcome(state=SyncState.IDLE)
        self._failed_batches = 0
        self._total_batches = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(
        self,
        date_range: DateRange,
        vehicle_filter: Optional[VehicleFilter] = None,
        token: Optional[CancellationToken] = None,
        on_event: Optional[EventCallback] = None,
    ) -> SyncOutcome:
        """
        Run a full synchronization.

        Never raises for remote failures or cancellation; the returned
        outcome carries the terminal state and whatever was produced.
        """
        self._token = token or CancellationToken()
        self._on_event = on_event
        self._vehicle_filter = vehicle_filter

        context_token = sync_run_id_var.set(uuid.uuid4().hex[:12])
        try:
            with PerformanceLogger(
                "sync_run",
                from_date=date_range.from_date.isoformat(),
                to_date=date_range.to_date.isoformat(),
            ):
                try:
                    await self._execute(date_range)
                except OperationCancelled:
                    self._finish_cancelled()
        finally:
            sync_run_id_var.reset(context_token)

        return self._outcome

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _execute(self, date_range: DateRange) -> None:
        try:
            chunks = chunk_date_range(date_range, self._config.CHUNK_DAYS)
        except InvalidRangeException as e:
            self._fail(e)
            return

        self._transition(SyncState.FETCHING_STUBS)
        try:
            stubs = await self._fetch_stubs(chunks)

            self._transition(SyncState.RESOLVING_EARLY_DRIVERS)
            await self._resolve_drivers(r.driver_id for r in stubs)
        except FatalFetchFailure as e:
            self._fail(e)
            return

        intermediate = self._build_result(stubs, detail_complete=not stubs)
        self._outcome.intermediate = intermediate
        self._emit(IntermediateResultEvent(intermediate))

        if not stubs:
            self._finish(intermediate)
            return

        try:
            final = await self._enrich(stubs)
        except OperationCancelled:
            raise
        except Exception as e:
            if self._token.cancelled:
                raise OperationCancelled(self._token.reason) from e
            logger.error(
                f"Detail enrichment failed in {self.state}: {e}",
                exc_info=True,
                extra={"phase": self.state.value, "error_type": type(e).__name__},
            )
            warning = PartialEnrichmentWarning(
                failed_batches=self._failed_batches,
                total_batches=self._total_batches,
                original_error=e,
            )
            final = replace(
                intermediate,
                detail_complete=False,
                failed_batches=self._failed_batches,
                warning=warning,
            )

        self._finish(final)

    async def _fetch_stubs(self, chunks: Sequence[DateChunk]) -> List[InspectionRecord]:
        """
        Fetch list-level stubs chunk by chunk.

        Raises:
            OperationCancelled: The token was cancelled
            FatalFetchFailure: A chunk could not be fetched
        """
        stubs: List[InspectionRecord] = []
        seen = set()
        share = self._config.STUB_PROGRESS_SHARE

        for chunk in chunks:
            self._token.raise_if_cancelled()
            if chunk.index > 0 and self._config.CHUNK_PAUSE_SECONDS > 0:
                await self._sleep(self._config.CHUNK_PAUSE_SECONDS)
                self._token.raise_if_cancelled()

            raw = await self._fetch_chunk(chunk, len(chunks))
            for item in raw if isinstance(raw, list) else []:
                record = InspectionRecord.from_api(item)
                # Chunk boundaries are inclusive on the server side
                if record is None or record.id in seen:
                    continue
                seen.add(record.id)
                stubs.append(record)

            self._progress((chunk.index + 1) / len(chunks) * share)

        logger.info(
            f"Fetched {len(stubs)} DVIR stubs in {len(chunks)} chunks",
            extra={"stubs": len(stubs), "chunks": len(chunks)},
        )
        return stubs

    async def _fetch_chunk(self, chunk: DateChunk, total: int) -> Any:
        async def attempt() -> Any:
            self._token.raise_if_cancelled()
            return await self._api.call(*get_call("DVIRLog", chunk.to_search()))

        retrying = build_rate_limit_retrying(
            self._retry_config,
            token=self._token,
            sleep=self._sleep,
            label=f"chunk {chunk.index + 1}/{total}",
        )
        try:
            return await retrying(attempt)
        except OperationCancelled:
            raise
        except Exception as e:
            if self._token.cancelled:
                raise OperationCancelled(self._token.reason) from e
            raise FatalFetchFailure(
                f"Failed to fetch inspections for chunk {chunk.index + 1} of {total}",
                phase=SyncState.FETCHING_STUBS.value,
                original_error=e,
            ) from e

    async def _resolve_drivers(self, identifiers: Iterable[Optional[str]]) -> None:
        try:
            outcome = await self._resolver.resolve(identifiers, token=self._token)
        except OperationCancelled:
            raise
        except Exception as e:
            raise FatalFetchFailure(
                "Driver identities could not be resolved",
                phase=self.state.value,
                original_error=e,
            ) from e

        self._failed_batches += outcome.failed_batches
        self._total_batches += outcome.total_batches
        if outcome.cancelled:
            raise OperationCancelled(self._token.reason)

    async def _enrich(self, stubs: List[InspectionRecord]) -> SyncResult:
        self._transition(SyncState.ENRICHING_DETAIL)
        share = self._config.STUB_PROGRESS_SHARE

        def on_batch_done(completed: int, total: int) -> None:
            self._progress(share + (1.0 - share) * completed / total)

        batcher = RateLimitedBatcher(
            self._api,
            retry_config=self._retry_config,
            token=self._token,
            sleep=self._sleep,
        )
        outcome = await batcher.run(
            [get_by_id_call("DVIRLog", stub.id) for stub in stubs],
            batch_size=self._config.DETAIL_BATCH_SIZE,
            inter_batch_delay=self._config.DETAIL_BATCH_DELAY_SECONDS,
            on_batch_done=on_batch_done,
        )
        self._failed_batches += outcome.failed_batches
        self._total_batches += outcome.total_batches
        if outcome.cancelled:
            raise OperationCancelled(self._token.reason)

        enrichment_failed = outcome.failed_batches
        records = self._merge(stubs, outcome.results)

        self._transition(SyncState.RESOLVING_LATE_DRIVERS)
        await self._resolve_drivers(self._late_driver_ids(records))

        self._transition(SyncState.AGGREGATING)
        warning = None
        if self._failed_batches:
            warning = PartialEnrichmentWarning(
                message=_partial_message(self._failed_batches, self._total_batches),
                failed_batches=self._failed_batches,
                total_batches=self._total_batches,
            )
        return self._build_result(
            records,
            detail_complete=enrichment_failed == 0,
            failed_batches=self._failed_batches,
            warning=warning,
        )

    @staticmethod
    def _merge(stubs: List[InspectionRecord], raw_records: Iterable[Any]) -> List[InspectionRecord]:
        """Replace each stub by its full record; stubs whose fetch failed are kept."""
        full: Dict[str, InspectionRecord] = {}
        for raw in raw_records:
            record = InspectionRecord.from_api(raw)
            if record is not None:
                full.setdefault(record.id, record)

        missing = sum(1 for s in stubs if s.id not in full)
        if missing:
            logger.warning(
                f"{missing} DVIR logs kept as stubs without defect detail",
                extra={"missing": missing},
            )
        return [full.get(stub.id, stub) for stub in stubs]

    @staticmethod
    def _late_driver_ids(records: Iterable[InspectionRecord]) -> List[str]:
        """Drivers of the full records plus every repair performer referenced by id."""
        ids = []
        for record in records:
            if record.driver_id:
                ids.append(record.driver_id)
            for defect in record.defects:
                if isinstance(defect.repair_user, EntityRef) and defect.repair_user.id:
                    ids.append(defect.repair_user.id)
        return ids

    # -------------------------------------------------------------------------
    # State and events
    # -------------------------------------------------------------------------

    def _build_result(
        self,
        records: List[InspectionRecord],
        detail_complete: bool,
        failed_batches: int = 0,
        warning: Optional[PartialEnrichmentWarning] = None,
    ) -> SyncResult:
        summary_rows = summarize(records, self._context, self._vehicle_filter)
        return SyncResult(
            records=list(records),
            summary_rows=summary_rows,
            detail_rows=detail(records, self._context, self._vehicle_filter),
            kpis=compute_kpis(summary_rows),
            detail_complete=detail_complete,
            failed_batches=failed_batches,
            warning=warning,
        )

    def _transition(self, state: SyncState) -> None:
        self._token.raise_if_cancelled()
        logger.debug(f"Sync state {self.state} -> {state}")
        self.state = state
        self._outcome.state = state

    def _progress(self, fraction: float) -> None:
        percent = round(min(max(fraction, 0.0), 1.0) * 100, 2)
        self._emit(ProgressEvent(phase=self.state, percent=percent))

    def _emit(self, event: SyncEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _finish(self, result: SyncResult) -> None:
        self._transition(SyncState.DONE)
        self._outcome.result = result
        self._emit(ProgressEvent(phase=SyncState.DONE, percent=100.0))
        self._emit(FinalResultEvent(result))
        log_event(
            logger,
            logging.INFO,
            "sync_completed",
            f"Sync finished with {len(result.summary_rows)} inspections",
            inspections=len(result.summary_rows),
            defects=len(result.detail_rows),
            failed_batches=result.failed_batches,
            detail_complete=result.detail_complete,
        )

    def _fail(self, error: DvirSyncException) -> None:
        logger.error(
            f"Sync failed: {error.message}",
            extra={"error_code": error.code.value, "phase": self.state.value},
        )
        self.state = SyncState.FAILED
        self._outcome.state = SyncState.FAILED
        self._outcome.error = error
        self._emit(FailureEvent(error))

    def _finish_cancelled(self) -> None:
        phase = self.state
        logger.info(f"Sync cancelled during {phase}", extra={"phase": phase.value})
        self.state = SyncState.CANCELLED
        self._outcome.state = SyncState.CANCELLED
        self._emit(CancelledEvent(phase=phase))


# =============================================================================
# Session
# =============================================================================


class SyncHandle:
    """Handle on one in-flight run."""

    def __init__(self, token: CancellationToken, task: "asyncio.Task[SyncOutcome]", pipeline: SyncPipeline):
        self.token = token
        self.task = task
        self.pipeline = pipeline

    @property
    def done(self) -> bool:
        return self.task.done()

    @property
    def state(self) -> SyncState:
        return self.pipeline.state

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Safe to call repeatedly or after the run ended."""
        self.token.cancel(reason)

    async def wait(self) -> SyncOutcome:
        return await self.task


class SyncSession:
    """
    One consumer's view onto the fleet.

    Owns the fleet context for its lifetime and keeps at most one run in
    flight.
    """

    def __init__(
        self,
        api: InspectionApi,
        context: Optional[FleetContext] = None,
        config: Optional[Settings] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._api = api
        self.context = context if context is not None else FleetContext()
        self._config = config or default_settings
        self._sleep = sleep
        self._current: Optional[SyncHandle] = None

    @property
    def current(self) -> Optional[SyncHandle]:
        return self._current

    async def load_foundation(self) -> FleetContext:
        """Load devices and groups into the session's fleet context."""
        return await load_foundation(
            self._api,
            self.context,
            results_limit=self._config.FOUNDATION_RESULTS_LIMIT,
        )

    def start_sync(
        self,
        date_range: DateRange,
        vehicle_filter: Optional[VehicleFilter] = None,
        on_event: Optional[EventCallback] = None,
    ) -> SyncHandle:
        """
        Start a run in the background, cancelling any run still in flight.

        Must be called from within a running event loop.
        """
        if self._current is not None and not self._current.done:
            self._current.cancel("superseded")

        token = CancellationToken()
        pipeline = SyncPipeline(self._api, self.context, self._config, self._sleep)
        task = asyncio.create_task(pipeline.run(date_range, vehicle_filter, token, on_event))
        self._current = SyncHandle(token, task, pipeline)
        return self._current

    def cancel(self, handle: Optional[SyncHandle] = None) -> None:
        """Cancel ``handle`` (or the current run). Idempotent."""
        target = handle or self._current
        if target is not None:
            target.cancel()

    async def close(self) -> None:
        """Cancel the current run and wait for it to stop."""
        if self._current is None:
            return
        self._current.cancel("session closed")
        await self._current.wait()
        self._current = None
