"""
Block grid math: boundaries defined once, centrally.

Pure functions for a fixed-size block grid (default 30 minutes: :00 and :30).
Boundaries are counted from midnight in the timezone the datetime carries,
so a local-time caller gets local-time boundaries. Naive values are taken
as UTC. ``block_minutes`` must divide a day evenly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


GRID_MINUTES = 30


def _check_grid(grid_minutes: int) -> None:
    if grid_minutes <= 0 or (24 * 60) % grid_minutes != 0:
        raise ValueError(f"grid_minutes must be a positive divisor of 1440, got {grid_minutes}")


def grid_start(now: datetime, grid_minutes: int = GRID_MINUTES) -> datetime:
    """Start of the grid block containing `now` (floor to the boundary).

    Args:
        now: Wall-clock time (aware preferred; naive is floored in UTC).
        grid_minutes: Grid size in minutes (default 30).

    Returns:
        Start of the block containing `now`.
    """
    _check_grid(grid_minutes)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    minutes_since_midnight = now.hour * 60 + now.minute
    block_minute = (minutes_since_midnight // grid_minutes) * grid_minutes
    return midnight + timedelta(minutes=block_minute)


def grid_end(now: datetime, grid_minutes: int = GRID_MINUTES) -> datetime:
    """End of the current grid block (exclusive end of block)."""
    return grid_start(now, grid_minutes) + timedelta(minutes=grid_minutes)


def next_boundary(now: datetime, grid_minutes: int = GRID_MINUTES) -> datetime:
    """First grid boundary strictly after `now`."""
    return grid_end(now, grid_minutes)



def block_range(window_start: datetime, index: int, grid_minutes: int = GRID_MINUTES) -> tuple[datetime, datetime]:
    """[start, end) of the `index`-th block of a window aligned at `window_start`."""
    first = grid_start(window_start, grid_minutes)
    start = first + timedelta(minutes=index * grid_minutes)
    return start, start + timedelta(minutes=grid_minutes)
