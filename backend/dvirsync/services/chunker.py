"""
Date range chunking.

List queries over long windows are split into bounded sub-ranges so each
single call stays small. Also provides the preset ranges offered to users.
"""

import math
from datetime import datetime, time, timedelta
from enum import StrEnum
from typing import List

from dvirsync.core.exceptions import InvalidRangeException
from dvirsync.schemas.sync import DateChunk, DateRange


def chunk_range(from_date: datetime, to_date: datetime, width: timedelta) -> List[DateChunk]:
    """
    Split [from_date, to_date) into contiguous chunks of at most ``width``.

    The last chunk is clipped to ``to_date``. The result has
    ceil((to_date - from_date) / width) elements.

    Raises:
        InvalidRangeException: If to_date <= from_date or width is not positive
    """
    if to_date <= from_date:
        raise InvalidRangeException(
            "Date range end must be after its start",
            start=from_date.isoformat(),
            end=to_date.isoformat(),
        )
    if width <= timedelta(0):
        raise InvalidRangeException(f"Chunk width must be positive, got {width}")

    count = math.ceil((to_date - from_date) / width)
    chunks = []
    for index in range(count):
        start = from_date + width * index
        end = min(start + width, to_date)
        chunks.append(DateChunk(from_date=start, to_date=end, index=index))
    return chunks


def chunk_date_range(date_range: DateRange, days: int) -> List[DateChunk]:
    """Chunk a DateRange into windows of ``days`` days."""
    return chunk_range(date_range.from_date, date_range.to_date, timedelta(days=days))


class DatePreset(StrEnum):
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "7days"
    LAST_30_DAYS = "30days"
    ALL_TIME = "alltime"


PRESET_DAYS = {
    DatePreset.LAST_7_DAYS: 7,
    DatePreset.LAST_30_DAYS: 30,
    DatePreset.ALL_TIME: 365,
}


def preset_range(preset: str, now: datetime) -> DateRange:
    """
    Resolve a named preset relative to ``now``.

    Multi-day presets start at midnight N days back and end at 23:59:59
    today; "yesterday" covers yesterday only. Unknown names fall back to
    the last 7 days.
    """
    try:
        key = DatePreset(preset)
    except ValueError:
        key = DatePreset.LAST_7_DAYS

    end_of_day = time(23, 59, 59)
    today = now.date()

    if key is DatePreset.YESTERDAY:
        day = today - timedelta(days=1)
        start = datetime.combine(day, time.min, tzinfo=now.tzinfo)
        end = datetime.combine(day, end_of_day, tzinfo=now.tzinfo)
        return DateRange(from_date=start, to_date=end)

    start_day = today - timedelta(days=PRESET_DAYS[key])
    start = datetime.combine(start_day, time.min, tzinfo=now.tzinfo)
    end = datetime.combine(today, end_of_day, tzinfo=now.tzinfo)
    return DateRange(from_date=start, to_date=end)
