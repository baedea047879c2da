"""
Projection of inspection records into summary rows, detail rows and KPIs.
"""

from collections.abc import Iterable
from typing import List, Optional

from dvirsync.schemas.inspection import InspectionRecord
from dvirsync.schemas.sync import (
    PLACEHOLDER,
    DetailRow,
    KpiSummary,
    SummaryRow,
    VehicleFilter,
)
from dvirsync.services.classifier import (
    RepairStatus,
    driver_name,
    remarks_text,
    repair_performer_name,
    status_key,
    status_label,
    vehicle_name,
)
from dvirsync.services.fleet_context import FleetContext, build_device_predicate


def _filtered(
    records: Iterable[InspectionRecord],
    context: FleetContext,
    vehicle_filter: Optional[VehicleFilter],
) -> List[InspectionRecord]:
    admits = build_device_predicate(context, vehicle_filter)
    return [r for r in records if admits(r.device_id)]


def summary_row(record: InspectionRecord, context: FleetContext) -> SummaryRow:
    outstanding = not_necessary = repaired = other = 0
    for defect in record.defects:
        status = defect.repair_status
        if status == RepairStatus.NOT_REPAIRED:
            outstanding += 1
        elif status == RepairStatus.NOT_NECESSARY:
            not_necessary += 1
        elif status == RepairStatus.REPAIRED:
            repaired += 1
        else:
            other += 1

    return SummaryRow(
        id=record.id,
        vehicle=vehicle_name(record, context),
        device_id=record.device_id,
        driver=driver_name(record, context),
        date=record.date_time,
        log_type=record.log_type or PLACEHOLDER,
        safe_to_operate=record.safe_to_operate,
        total_defects=len(record.defects),
        outstanding_defects=outstanding,
        not_necessary=not_necessary,
        repaired=repaired,
        other_defects=other,
    )


def summarize(
    records: Iterable[InspectionRecord],
    context: FleetContext,
    vehicle_filter: Optional[VehicleFilter] = None,
) -> List[SummaryRow]:
    """One row per admitted record, in input order."""
    return [summary_row(r, context) for r in _filtered(records, context, vehicle_filter)]


def detail(
    records: Iterable[InspectionRecord],
    context: FleetContext,
    vehicle_filter: Optional[VehicleFilter] = None,
) -> List[DetailRow]:
    """One row per (record, defect) pair for every admitted record."""
    rows = []
    for record in _filtered(records, context, vehicle_filter):
        if not record.defects:
            continue
        vehicle = vehicle_name(record, context)
        driver = driver_name(record, context)
        for defect in record.defects:
            description = defect.defect
            rows.append(
                DetailRow(
                    dvir_log_id=record.id,
                    vehicle=vehicle,
                    device_id=record.device_id,
                    driver=driver,
                    date=record.date_time,
                    part=defect.part or PLACEHOLDER,
                    defect=(description.label if description else None) or PLACEHOLDER,
                    severity=(description.severity if description else None) or PLACEHOLDER,
                    repair_status=status_label(defect.repair_status),
                    repair_status_key=status_key(defect.repair_status),
                    repaired_by=repair_performer_name(defect, context),
                    repair_date=defect.repair_date_time,
                    remarks=remarks_text(defect),
                )
            )
    return rows


def compute_kpis(rows: Iterable[SummaryRow]) -> KpiSummary:
    kpis = KpiSummary()
    for row in rows:
        kpis.total_inspections += 1
        kpis.total_defects += row.total_defects
        if row.outstanding_defects > 0:
            kpis.outstanding_inspections += 1
        if row.not_necessary > 0:
            kpis.not_necessary_inspections += 1
    return kpis
