"""
Search, status filtering and sorting over projected rows.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from functools import cmp_to_key
from typing import Any, List, Optional, TypeVar

from pydantic import BaseModel

RowT = TypeVar("RowT", bound=BaseModel)

SUMMARY_SEARCH_FIELDS = ("vehicle", "driver")
DETAIL_SEARCH_FIELDS = ("vehicle", "driver", "part", "defect", "remarks")

ALL_STATUSES = "all"


def search_rows(rows: Iterable[RowT], term: Optional[str], fields: Sequence[str]) -> List[RowT]:
    """Case-insensitive substring match over the named fields."""
    rows = list(rows)
    needle = (term or "").strip().casefold()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if any(needle in str(getattr(row, f, "") or "").casefold() for f in fields)
    ]


def filter_by_status(rows: Iterable[RowT], key: Optional[str]) -> List[RowT]:
    """Keep detail rows whose repair_status_key equals ``key``; "all" keeps every row."""
    rows = list(rows)
    if not key or key == ALL_STATUSES:
        return rows
    return [row for row in rows if getattr(row, "repair_status_key", None) == key]


def _compare(a: Any, b: Any) -> int:
    a = "" if a is None else a
    b = "" if b is None else b

    if isinstance(a, bool) and isinstance(b, bool):
        # True sorts first
        return (b > a) - (b < a)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)) and not isinstance(a, bool) and not isinstance(b, bool):
        return (a > b) - (a < b)
    if isinstance(a, datetime) and isinstance(b, datetime):
        return (a > b) - (a < b)

    left, right = str(a).casefold(), str(b).casefold()
    return (left > right) - (left < right)


def sort_rows(rows: Iterable[RowT], column: str, descending: bool = False) -> List[RowT]:
    """Stable sort on one column."""
    key = cmp_to_key(lambda x, y: _compare(getattr(x, column, None), getattr(y, column, None)))
    return sorted(rows, key=key, reverse=descending)
