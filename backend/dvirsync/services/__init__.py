"""
Services module for dvirsync.

This module contains the MyGeotab client and the pieces of the progressive
sync pipeline: chunking, rate-limited batching, identity resolution,
classification, aggregation, row queries and export.
"""

from dvirsync.services.geotab_client import (
    GeotabClient,
    InspectionApi,
    get_by_id_call,
    get_call,
)
from dvirsync.services.chunker import DatePreset, chunk_date_range, chunk_range, preset_range
from dvirsync.services.batcher import BatchOutcome, RateLimitedBatcher
from dvirsync.services.fleet_context import FleetContext, load_foundation
from dvirsync.services.entity_resolver import EntityResolver
from dvirsync.services.classifier import (
    RepairStatus,
    defects_of,
    has_defects,
    has_unnecessary_repair,
    is_outstanding,
    repair_status,
    status_key,
    status_label,
)
from dvirsync.services.aggregator import compute_kpis, detail, summarize
from dvirsync.services.row_query import filter_by_status, search_rows, sort_rows
from dvirsync.services.export import DETAIL_EXPORT_FIELDS, SUMMARY_EXPORT_FIELDS, rows_to_csv, write_csv
from dvirsync.services.sync_pipeline import SyncHandle, SyncPipeline, SyncSession

__all__ = [
    # MyGeotab client
    "GeotabClient",
    "InspectionApi",
    "get_by_id_call",
    "get_call",
    # Chunking
    "DatePreset",
    "chunk_date_range",
    "chunk_range",
    "preset_range",
    # Batching and resolution
    "BatchOutcome",
    "RateLimitedBatcher",
    "FleetContext",
    "load_foundation",
    "EntityResolver",
    # Classification
    "RepairStatus",
    "defects_of",
    "has_defects",
    "has_unnecessary_repair",
    "is_outstanding",
    "repair_status",
    "status_key",
    "status_label",
    # Aggregation
    "compute_kpis",
    "detail",
    "summarize",
    # Rows
    "filter_by_status",
    "search_rows",
    "sort_rows",
    "DETAIL_EXPORT_FIELDS",
    "SUMMARY_EXPORT_FIELDS",
    "rows_to_csv",
    "write_csv",
    # Pipeline
    "SyncHandle",
    "SyncPipeline",
    "SyncSession",
]
