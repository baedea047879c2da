"""
Tests for date range chunking and presets.

Tests cover:
- Exact cover: contiguous, ordered, non-overlapping chunks
- Chunk count and clipping of the last chunk
- Invalid range rejection
- Named presets
"""

from datetime import datetime, timedelta, timezone

import pytest

from dvirsync.core.exceptions import ErrorCode, InvalidRangeException
from dvirsync.schemas.sync import DateRange
from dvirsync.services.chunker import chunk_date_range, chunk_range, preset_range

UTC = timezone.utc
START = datetime(2024, 3, 1, tzinfo=UTC)


class TestChunkRange:
    """Test chunk_range cover properties."""

    @pytest.mark.parametrize("days,expected", [(1, 1), (6, 1), (7, 1), (8, 2), (10, 2), (14, 2), (15, 3), (365, 53)])
    def test_chunk_count_is_ceiling(self, days, expected):
        """Test that an N-day range yields ceil(N / 7) chunks."""
        chunks = chunk_range(START, START + timedelta(days=days), timedelta(days=7))
        assert len(chunks) == expected

    def test_chunks_cover_range_exactly(self):
        """Test contiguity, ordering and exact endpoints."""
        end = START + timedelta(days=23, hours=5)
        chunks = chunk_range(START, end, timedelta(days=7))

        assert chunks[0].from_date == START
        assert chunks[-1].to_date == end
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.to_date == current.from_date
            assert previous.from_date < current.from_date

    def test_last_chunk_is_clipped(self):
        """Test that the final chunk ends at the range end."""
        chunks = chunk_range(START, START + timedelta(days=10), timedelta(days=7))
        assert chunks[0].duration == timedelta(days=7)
        assert chunks[1].duration == timedelta(days=3)

    def test_chunks_are_indexed_in_order(self):
        chunks = chunk_range(START, START + timedelta(days=30), timedelta(days=7))
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_end_before_start_is_rejected(self):
        """Test that end <= start raises before anything else happens."""
        with pytest.raises(InvalidRangeException) as exc_info:
            chunk_range(START, START - timedelta(days=1), timedelta(days=7))
        assert exc_info.value.code == ErrorCode.INVALID_RANGE

    def test_empty_range_is_rejected(self):
        with pytest.raises(InvalidRangeException):
            chunk_range(START, START, timedelta(days=7))

    def test_non_positive_width_is_rejected(self):
        with pytest.raises(InvalidRangeException):
            chunk_range(START, START + timedelta(days=1), timedelta(0))

    def test_chunk_date_range_uses_days(self):
        date_range = DateRange(from_date=START, to_date=START + timedelta(days=10))
        chunks = chunk_date_range(date_range, 7)
        assert len(chunks) == 2
        assert chunks[0].to_search() == {
            "fromDate": START.isoformat(),
            "toDate": (START + timedelta(days=7)).isoformat(),
        }


class TestPresets:
    """Test named date presets."""

    NOW = datetime(2024, 3, 15, 14, 30, tzinfo=UTC)

    def test_yesterday(self):
        """Test that yesterday spans 00:00:00 to 23:59:59 of the previous day."""
        r = preset_range("yesterday", self.NOW)
        assert r.from_date == datetime(2024, 3, 14, 0, 0, 0, tzinfo=UTC)
        assert r.to_date == datetime(2024, 3, 14, 23, 59, 59, tzinfo=UTC)

    @pytest.mark.parametrize("preset,days", [("7days", 7), ("30days", 30), ("alltime", 365)])
    def test_multi_day_presets(self, preset, days):
        """Test that multi-day presets run from midnight N days back to end of today."""
        r = preset_range(preset, self.NOW)
        assert r.from_date == datetime(2024, 3, 15, tzinfo=UTC) - timedelta(days=days)
        assert r.to_date == datetime(2024, 3, 15, 23, 59, 59, tzinfo=UTC)

    def test_unknown_preset_falls_back_to_seven_days(self):
        assert preset_range("fortnight", self.NOW) == preset_range("7days", self.NOW)
