"""
Sync pipeline schemas.

Date ranges, projected rows, pipeline states, events and outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dvirsync.core.exceptions import DvirSyncException, PartialEnrichmentWarning
from dvirsync.schemas.inspection import InspectionRecord

PLACEHOLDER = "--"


# =============================================================================
# Date Ranges
# =============================================================================


class DateRange(BaseModel):
    """A half-open [from_date, to_date) instant range."""

    model_config = ConfigDict(frozen=True)

    from_date: datetime = Field(..., description="Inclusive start")
    to_date: datetime = Field(..., description="Exclusive end")

    @property
    def duration(self) -> timedelta:
        return self.to_date - self.from_date

    def to_search(self) -> dict[str, str]:
        """Render as a MyGeotab search fragment."""
        return {
            "fromDate": self.from_date.isoformat(),
            "toDate": self.to_date.isoformat(),
        }


class DateChunk(DateRange):
    """One bounded sub-range produced by the chunker."""

    index: int = Field(0, description="Position in the chunk sequence")


class VehicleFilter(BaseModel):
    """
    Restricts projections to one vehicle or one group.

    A specific vehicle wins over a group. With neither set, every record
    passes.
    """

    model_config = ConfigDict(frozen=True)

    vehicle_id: Optional[str] = None
    group_id: Optional[str] = None

    @field_validator("vehicle_id", "group_id", mode="before")
    @classmethod
    def normalize_all(cls, v: Optional[str]) -> Optional[str]:
        # "all" is what the selection widgets send for no restriction
        if v in ("all", ""):
            return None
        return v

    @property
    def is_unrestricted(self) -> bool:
        return not self.vehicle_id and not self.group_id


# =============================================================================
# Projected Rows
# =============================================================================


class SummaryRow(BaseModel):
    """One row per inspection."""

    id: str
    vehicle: str = PLACEHOLDER
    device_id: Optional[str] = None
    driver: str = PLACEHOLDER
    date: Optional[datetime] = None
    log_type: str = PLACEHOLDER
    safe_to_operate: bool = True
    total_defects: int = 0
    outstanding_defects: int = 0
    not_necessary: int = 0
    repaired: int = 0
    other_defects: int = 0


class DetailRow(BaseModel):
    """One row per (inspection, defect) pair."""

    dvir_log_id: str
    vehicle: str = PLACEHOLDER
    device_id: Optional[str] = None
    driver: str = PLACEHOLDER
    date: Optional[datetime] = None
    part: str = PLACEHOLDER
    defect: str = PLACEHOLDER
    severity: str = PLACEHOLDER
    repair_status: str = PLACEHOLDER
    repair_status_key: str = "other"
    repaired_by: str = PLACEHOLDER
    repair_date: Optional[datetime] = None
    remarks: str = PLACEHOLDER


class KpiSummary(BaseModel):
    """Headline counts over the summary rows."""

    total_inspections: int = 0
    outstanding_inspections: int = 0
    not_necessary_inspections: int = 0
    total_defects: int = 0


# =============================================================================
# Pipeline States, Results and Events
# =============================================================================


class SyncState(StrEnum):
    IDLE = "idle"
    FETCHING_STUBS = "fetching_stubs"
    RESOLVING_EARLY_DRIVERS = "resolving_early_drivers"
    ENRICHING_DETAIL = "enriching_detail"
    RESOLVING_LATE_DRIVERS = "resolving_late_drivers"
    AGGREGATING = "aggregating"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncState.DONE, SyncState.CANCELLED, SyncState.FAILED)


@dataclass
class SyncResult:
    """A snapshot of the synchronized view."""

    records: List[InspectionRecord] = field(default_factory=list)
    summary_rows: List[SummaryRow] = field(default_factory=list)
    detail_rows: List[DetailRow] = field(default_factory=list)
    kpis: KpiSummary = field(default_factory=KpiSummary)
    detail_complete: bool = False
    failed_batches: int = 0
    warning: Optional[PartialEnrichmentWarning] = None


@dataclass(frozen=True)
class ProgressEvent:
    phase: SyncState
    percent: float


@dataclass(frozen=True)
class IntermediateResultEvent:
    """Summary built from stubs, emitted before detail enrichment starts."""

    result: SyncResult


@dataclass(frozen=True)
class FinalResultEvent:
    result: SyncResult


@dataclass(frozen=True)
class FailureEvent:
    error: DvirSyncException


@dataclass(frozen=True)
class CancelledEvent:
    phase: SyncState


SyncEvent = ProgressEvent | IntermediateResultEvent | FinalResultEvent | FailureEvent | CancelledEvent


@dataclass
class SyncOutcome:
    """Terminal state of one run, plus whatever it produced."""

    state: SyncState
    intermediate: Optional[SyncResult] = None
    result: Optional[SyncResult] = None
    error: Optional[DvirSyncException] = None

    @property
    def latest(self) -> Optional[SyncResult]:
        """The last result a caller would have seen."""
        return self.result or self.intermediate
