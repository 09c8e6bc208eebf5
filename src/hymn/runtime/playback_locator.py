"""
Live Playback Locator.

Pure logic: (block or block list, at_time) -> what is live and at which
offset. No cursor, no mutation; any number of readers asking at the same
instant against the same session get the same answer. All offsets are float
seconds relative to the block start.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from hymn.infra.exceptions import InvalidBlockError
from hymn.runtime.segment_types import (
    AudioBlock,
    Segment,
    ensure_utc,
)


class PlaybackStatus(str, enum.Enum):
    LIVE = "live"
    GAP = "gap"  # transition silence between segments
    NOT_STARTED = "not_started"
    ENDED = "ended"


@dataclass(frozen=True)
class PlaybackPosition:
    """Result of :func:`locate`.

    ``segment`` is None unless ``status`` is LIVE. ``total_elapsed`` is always
    reported, also when the block is not live.
    """

    status: PlaybackStatus
    total_elapsed: float
    segment: Segment | None = None
    position_in_segment: float = 0.0

    @property
    def is_live(self) -> bool:
        return self.status is PlaybackStatus.LIVE

    @property
    def segment_type(self) -> str | None:
        return self.segment.kind if self.segment is not None else None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "totalElapsed": self.total_elapsed,
            "segmentType": self.segment_type,
            "segment": self.segment.to_dict() if self.segment is not None else None,
            "positionInSegment": self.position_in_segment,
        }


def _elapsed(block: AudioBlock, at_time: datetime) -> float:
    if block.end_time <= block.start_time:
        raise InvalidBlockError(
            f"Block {block.id} has end {block.end_time.isoformat()} "
            f"not after start {block.start_time.isoformat()}"
        )
    return (ensure_utc(at_time) - block.start_time).total_seconds()


def locate(block: AudioBlock, at_time: datetime) -> PlaybackPosition:
    """Find the live segment of ``block`` at ``at_time``.

    Rule: live iff ``timing <= elapsed < timing + duration``. Outside
    ``[start_time, end_time)`` the result is NOT_STARTED/ENDED; inside but
    between segments it is GAP.

    Raises:
        InvalidBlockError: ``block.end_time <= block.start_time``.
    """
    elapsed = _elapsed(block, at_time)
    if elapsed < 0:
        return PlaybackPosition(PlaybackStatus.NOT_STARTED, elapsed)
    if elapsed >= block.duration_seconds:
        return PlaybackPosition(PlaybackStatus.ENDED, elapsed)

    for seg in block.segments():
        if seg.timing <= elapsed < seg.end:
            return PlaybackPosition(
                PlaybackStatus.LIVE,
                elapsed,
                segment=seg,
                position_in_segment=elapsed - seg.timing,
            )
        if seg.timing > elapsed:
            break
    return PlaybackPosition(PlaybackStatus.GAP, elapsed)


def locate_in_schedule(blocks: Sequence[AudioBlock], at_time: datetime) -> AudioBlock | None:
    """The block with ``start_time <= at_time < end_time``, or None."""
    at_time = ensure_utc(at_time)
    for block in blocks:
        if block.start_time <= at_time < block.end_time:
            return block
    return None


def upcoming(block: AudioBlock, elapsed: float) -> list[Segment]:
    """Segments starting after ``elapsed``, in timing order."""
    return [seg for seg in block.segments() if seg.timing > elapsed]


def past(block: AudioBlock, elapsed: float) -> list[Segment]:
    """Segments that ended at or before ``elapsed``, in timing order."""
    return [seg for seg in block.segments() if seg.end <= elapsed]


def time_until_next_block(block: AudioBlock, at_time: datetime) -> float:
    """Seconds until ``block`` ends (0 when already over)."""
    return max(0.0, (block.end_time - ensure_utc(at_time)).total_seconds())
