"""
Unit tests for block grid math.

Boundaries are :00/:30 for the default 30-minute grid; other divisors of a
day are supported, anything else is rejected.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hymn.runtime.grid import (
    block_range,
    grid_end,
    grid_start,
    next_boundary,
)

class TestGridStart:
    def test_at_boundary_is_unchanged(self):
        now = datetime(2025, 1, 15, 14, 30, 0, tzinfo=timezone.utc)
        assert grid_start(now) == now

    def test_floors_to_previous_boundary(self):
        now = datetime(2025, 1, 15, 9, 7, 42, 123456, tzinfo=timezone.utc)
        assert grid_start(now) == datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def test_floors_second_half_hour(self):
        now = datetime(2025, 1, 15, 9, 59, 59, tzinfo=timezone.utc)
        assert grid_start(now) == datetime(2025, 1, 15, 9, 30, 0, tzinfo=timezone.utc)

    def test_hour_grid(self):
        now = datetime(2025, 1, 15, 9, 45, tzinfo=timezone.utc)
        assert grid_start(now, 60) == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)

    def test_naive_is_treated_as_utc(self):
        now = datetime(2025, 1, 15, 9, 7)
        assert grid_start(now) == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)

    def test_local_timezone_boundaries(self):
        tz = timezone(timedelta(hours=5, minutes=45))
        now = datetime(2025, 1, 15, 9, 7, tzinfo=tz)
        assert grid_start(now) == datetime(2025, 1, 15, 9, 0, tzinfo=tz)

    @pytest.mark.parametrize("minutes", [0, -30, 7, 25])
    def test_rejects_grid_that_does_not_divide_a_day(self, minutes):
        with pytest.raises(ValueError):
            grid_start(datetime(2025, 1, 15, 9, 7, tzinfo=timezone.utc), minutes)

class TestGridOffsets:
    def test_end_and_next_boundary(self):
        now = datetime(2025, 1, 15, 9, 7, tzinfo=timezone.utc)
        assert grid_end(now) == datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)
        assert next_boundary(now) == grid_end(now)

class TestBlockRange:
    def test_first_block_is_aligned(self):
        start, end = block_range(datetime(2025, 1, 15, 9, 7, tzinfo=timezone.utc), 0)
        assert start == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_consecutive_blocks_are_contiguous(self):
        window_start = datetime(2025, 1, 15, 23, 10, tzinfo=timezone.utc)
        ranges = [block_range(window_start, i) for i in range(4)]
        for (_, left_end), (right_start, _) in zip(ranges, ranges[1:]):
            assert left_end == right_start
        # Crosses midnight
        assert ranges[2][0] == datetime(2025, 1, 16, 0, 0, tzinfo=timezone.utc)
