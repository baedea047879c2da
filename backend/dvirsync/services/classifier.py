"""
Repair-status classification and display-field readers.

Every function here is total: it accepts either a raw API mapping or a
parsed model and never raises on missing or oddly shaped fields.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any, List, Optional, Union

from dvirsync.schemas.inspection import (
    UNKNOWN_DRIVER_ID,
    DefectEntry,
    EntityRef,
    InspectionRecord,
    raw_defects,
)
from dvirsync.schemas.sync import PLACEHOLDER
from dvirsync.services.fleet_context import FleetContext

RecordLike = Union[InspectionRecord, Mapping[str, Any]]
DefectLike = Union[DefectEntry, Mapping[str, Any]]


class RepairStatus(StrEnum):
    NOT_REPAIRED = "NotRepaired"
    NOT_NECESSARY = "NotNecessary"
    REPAIRED = "Repaired"


STATUS_KEYS = {
    RepairStatus.NOT_REPAIRED: "outstanding",
    RepairStatus.NOT_NECESSARY: "notNecessary",
    RepairStatus.REPAIRED: "repaired",
}

STATUS_LABELS = {
    RepairStatus.NOT_REPAIRED: "Outstanding",
    RepairStatus.NOT_NECESSARY: "Not Necessary",
    RepairStatus.REPAIRED: "Repaired",
}

OTHER_STATUS_KEY = "other"


# =============================================================================
# Status
# =============================================================================


def defects_of(record: Optional[RecordLike]) -> List[DefectLike]:
    """The defect collection of a record, whichever alias it arrived under."""
    if isinstance(record, InspectionRecord):
        return list(record.defects)
    if isinstance(record, Mapping):
        if "defects" in record and isinstance(record["defects"], list):
            return list(record["defects"])
        return raw_defects(record)
    return []


def repair_status(defect: Optional[DefectLike]) -> str:
    """The raw repair status, or "" when absent or not a string."""
    if isinstance(defect, DefectEntry):
        return defect.repair_status
    if isinstance(defect, Mapping):
        value = defect.get("repairStatus")
        return value if isinstance(value, str) else ""
    return ""


def _any_with_status(record: Optional[RecordLike], status: RepairStatus) -> bool:
    return any(repair_status(d) == status for d in defects_of(record))


def is_outstanding(record: Optional[RecordLike]) -> bool:
    """True if any defect is still NotRepaired."""
    return _any_with_status(record, RepairStatus.NOT_REPAIRED)


def has_unnecessary_repair(record: Optional[RecordLike]) -> bool:
    return _any_with_status(record, RepairStatus.NOT_NECESSARY)


def has_defects(record: Optional[RecordLike]) -> bool:
    return len(defects_of(record)) > 0


def status_key(status: str) -> str:
    """Stable filter key for a repair status."""
    try:
        return STATUS_KEYS[RepairStatus(status)]
    except ValueError:
        return OTHER_STATUS_KEY


def status_label(status: str) -> str:
    """Display label; unknown statuses show as-is, empty ones as the placeholder."""
    try:
        return STATUS_LABELS[RepairStatus(status)]
    except ValueError:
        return status or PLACEHOLDER


# =============================================================================
# Display Fields
# =============================================================================


def vehicle_name(record: InspectionRecord, context: FleetContext) -> str:
    """Device map name, then inline name, then id."""
    device = context.device(record.device_id)
    if device is not None and device.name:
        return device.name
    if record.device is not None:
        return record.device.name or record.device.id or PLACEHOLDER
    return PLACEHOLDER


def driver_name(record: InspectionRecord, context: FleetContext) -> str:
    """Cached identity, then inline name, then the raw id unless it is the sentinel."""
    ref = record.driver
    if ref is None:
        return PLACEHOLDER
    cached = context.driver(ref.id)
    if cached is not None:
        return cached.display_name
    if ref.name:
        return ref.name
    if ref.id and ref.id != UNKNOWN_DRIVER_ID:
        return ref.id
    return PLACEHOLDER


def repair_performer_name(defect: DefectEntry, context: FleetContext) -> str:
    performer = defect.repair_user
    if performer is None:
        return PLACEHOLDER

    cached = context.driver(defect.repair_user_id)
    if cached is not None:
        return cached.display_name
    if isinstance(performer, EntityRef):
        return performer.name or performer.id or PLACEHOLDER
    return performer


def remarks_text(defect: DefectEntry) -> str:
    texts = [r.content for r in defect.remarks if r.content]
    return "; ".join(texts) if texts else PLACEHOLDER
