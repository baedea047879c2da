# Schemas module
from dvirsync.schemas.inspection import (
    DEFECT_FIELD_ALIASES,
    UNKNOWN_DRIVER_ID,
    DefectDescription,
    DefectEntry,
    DefectRemark,
    Device,
    DriverIdentity,
    EntityRef,
    Group,
    InspectionRecord,
)
from dvirsync.schemas.sync import (
    PLACEHOLDER,
    CancelledEvent,
    DateChunk,
    DateRange,
    DetailRow,
    FailureEvent,
    FinalResultEvent,
    IntermediateResultEvent,
    KpiSummary,
    ProgressEvent,
    SummaryRow,
    SyncEvent,
    SyncOutcome,
    SyncResult,
    SyncState,
    VehicleFilter,
)

__all__ = [
    # Inspection schemas
    "DEFECT_FIELD_ALIASES",
    "UNKNOWN_DRIVER_ID",
    "DefectDescription",
    "DefectEntry",
    "DefectRemark",
    "Device",
    "DriverIdentity",
    "EntityRef",
    "Group",
    "InspectionRecord",
    # Sync schemas
    "PLACEHOLDER",
    "CancelledEvent",
    "DateChunk",
    "DateRange",
    "DetailRow",
    "FailureEvent",
    "FinalResultEvent",
    "IntermediateResultEvent",
    "KpiSummary",
    "ProgressEvent",
    "SummaryRow",
    "SyncEvent",
    "SyncOutcome",
    "SyncResult",
    "SyncState",
    "VehicleFilter",
]
