"""
Delimited-text export of projected rows.

Values containing the delimiter, a quote or a line break are quote-wrapped
with embedded quotes doubled. Lines end with a bare newline.
"""

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Tuple

from pydantic import BaseModel

from dvirsync.core.logging import get_logger
from dvirsync.schemas.sync import PLACEHOLDER

logger = get_logger(__name__)

# (attribute, header) pairs, in column order
ExportField = Tuple[str, str]

SUMMARY_EXPORT_FIELDS: Tuple[ExportField, ...] = (
    ("vehicle", "vehicle"),
    ("driver", "driver"),
    ("date", "date"),
    ("log_type", "logType"),
    ("safe_to_operate", "safeToOperate"),
    ("total_defects", "totalDefects"),
    ("outstanding_defects", "outstandingDefects"),
    ("not_necessary", "notNecessary"),
    ("repaired", "repaired"),
)

DETAIL_EXPORT_FIELDS: Tuple[ExportField, ...] = (
    ("vehicle", "vehicle"),
    ("driver", "driver"),
    ("date", "date"),
    ("part", "part"),
    ("defect", "defect"),
    ("severity", "severity"),
    ("repair_status", "repairStatus"),
    ("repaired_by", "repairedBy"),
    ("repair_date", "repairDate"),
    ("remarks", "remarks"),
)


def format_value(value: Any) -> str:
    if value is None:
        return PLACEHOLDER
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def rows_to_csv(rows: Iterable[BaseModel], fields: Sequence[ExportField]) -> str:
    """Render rows as CSV text with a header line."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow([header for _, header in fields])
    count = 0
    for row in rows:
        writer.writerow([format_value(getattr(row, attr, None)) for attr, _ in fields])
        count += 1
    logger.debug(f"Rendered {count} rows to CSV")
    return buffer.getvalue()


def write_csv(path: str | Path, rows: Iterable[BaseModel], fields: Sequence[ExportField]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(rows_to_csv(rows, fields), encoding="utf-8")
    logger.info(f"Exported CSV to {path}")
    return path
