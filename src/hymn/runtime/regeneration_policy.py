"""
Regeneration Policy.

Decides when the shared session must be rebuilt and what has to survive the
rebuild.

Triggers, in order:

- expiry: ``at_time >= expires_at`` (inclusive);
- calendar change: a heuristic, see :class:`RegenerationPolicy`;
- stale age: a block still on air or ahead was generated longer ago than
  the configured threshold (off by default).

Locking: a segment is locked when it is explicitly marked ``locked`` or its
absolute start is already in the past. A block is locked when it has started
or holds a locked segment. Locked content is never edited. Regeneration keeps
locked blocks as they are and replaces only the unlocked future slice,
delete-then-reinsert style.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Literal

from hymn.infra.exceptions import LockedSegmentError
from hymn.runtime.grid import GRID_MINUTES, grid_start
from hymn.runtime.segment_types import (
    AudioBlock,
    BroadcastSession,
    MusicSegment,
    Segment,
    Track,
    ensure_utc,
)

logger = logging.getLogger(__name__)

CALENDAR_KEYWORDS: tuple[str, ...] = ("meeting", "event", "calendar")

CalendarCheck = Literal["keywords", "event_ids", "off"]

BlockBuilder = Callable[[int, datetime, datetime], AudioBlock]


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------

def segment_start(block: AudioBlock, segment: Segment) -> datetime:
    return block.start_time + timedelta(seconds=segment.timing)


def is_locked(segment: Segment, block: AudioBlock, at_time: datetime) -> bool:
    """True when ``segment`` is marked locked or already started before ``at_time``."""
    return segment.locked or segment_start(block, segment) < ensure_utc(at_time)


def block_is_locked(block: AudioBlock, at_time: datetime) -> bool:
    if block.start_time < ensure_utc(at_time):
        return True
    return any(seg.locked for seg in block.segments())


def lock_past_segments(block: AudioBlock, at_time: datetime) -> AudioBlock:
    """Copy of ``block`` with every started segment marked ``locked``."""
    at_time = ensure_utc(at_time)
    return block.with_segments(
        voice_segments=tuple(
            replace(v, locked=True) if is_locked(v, block, at_time) else v for v in block.voice_segments
        ),
        music_segments=tuple(
            replace(m, locked=True) if is_locked(m, block, at_time) else m for m in block.music_segments
        ),
    )


def assert_only_future_changed(before: AudioBlock, after: AudioBlock, at_time: datetime) -> None:
    """Raise :class:`LockedSegmentError` if a locked segment of ``before`` is missing or altered in ``after``."""
    remaining = set(after.segments())
    for seg in before.segments():
        if is_locked(seg, before, at_time) and seg not in remaining:
            raise LockedSegmentError(
                f"{seg.kind} segment at {seg.timing}s of block {before.id!r} is locked"
            )


# ---------------------------------------------------------------------------
# Trigger heuristics
# ---------------------------------------------------------------------------

def count_calendar_mentions(blocks: Sequence[AudioBlock], at_time: datetime | None = None) -> int:
    """Voice segments whose text mentions scheduling keywords.

    With ``at_time``, blocks that have already ended are skipped so the count
    covers the same horizon as a live event query from ``at_time`` onward.
    """
    cutoff = ensure_utc(at_time) if at_time is not None else None
    count = 0
    for block in blocks:
        if cutoff is not None and block.end_time <= cutoff:
            continue
        for voice in block.voice_segments:
            text = voice.content.lower()
            if any(word in text for word in CALENDAR_KEYWORDS):
                count += 1
    return count


def expected_event_ids(session: BroadcastSession, at_time: datetime) -> set[str]:
    """Recorded events that should still be live between ``at_time`` and the session end.

    Events recorded without a time window are always expected.
    """
    at_time = ensure_utc(at_time)
    end = session.end_time or at_time
    expected = set()
    for event_id in session.calendar_event_ids:
        window = session.calendar_event_windows.get(event_id)
        if window is None or (window[0] < end and window[1] > at_time):
            expected.add(event_id)
    return expected


@dataclass(frozen=True)
class RegenerationPolicy:
    """When to rebuild the session.

    The calendar check is approximate and selectable:

    - ``"event_ids"`` (default) compares live event ids against the ids
      recorded on the session that should still be on the calendar.
    - ``"keywords"`` compares the live count of calendar events against the
      number of voice segments mentioning meetings/events/calendar. It can
      fire on a coincidental keyword and miss a swapped event.
    - ``"off"`` disables the check.

    ``min_interval`` suppresses the calendar and stale checks for a freshly
    created session; expiry is never suppressed.
    """

    stale_after: timedelta | None = None
    calendar_check: CalendarCheck = "event_ids"
    min_interval: timedelta = timedelta(minutes=5)

    def reason(
        self,
        session: BroadcastSession,
        live_calendar_event_count: int | None,
        at_time: datetime,
        live_event_ids: Sequence[str] | None = None,
    ) -> str | None:
        """Name of the first trigger that fires, or None."""
        at_time = ensure_utc(at_time)
        if at_time >= session.expires_at:
            return "expired"
        if at_time - session.created_at < self.min_interval:
            return None

        if self.calendar_check == "keywords" and live_calendar_event_count is not None:
            mentions = count_calendar_mentions(session.blocks, at_time)
            if mentions != live_calendar_event_count:
                logger.debug(
                    "Calendar heuristic mismatch: %d live event(s) vs %d mention(s)",
                    live_calendar_event_count, mentions,
                )
                return "calendar_changed"
        elif self.calendar_check == "event_ids" and live_event_ids is not None:
            if set(live_event_ids) != expected_event_ids(session, at_time):
                return "calendar_changed"

        if self.stale_after is not None and self.stale_after > timedelta(0):
            cutoff = at_time - self.stale_after
            for block in session.blocks:
                if block.end_time <= at_time:
                    continue
                generated = block.generated_at or session.created_at
                if generated <= cutoff:
                    return "stale"
        return None

    def should_regenerate(
        self,
        session: BroadcastSession,
        live_calendar_event_count: int | None,
        at_time: datetime,
        live_event_ids: Sequence[str] | None = None,
    ) -> bool:
        return self.reason(session, live_calendar_event_count, at_time, live_event_ids) is not None


def should_regenerate(
    session: BroadcastSession,
    live_calendar_event_count: int | None,
    at_time: datetime,
    *,
    policy: RegenerationPolicy | None = None,
) -> bool:
    """Functional form of :meth:`RegenerationPolicy.should_regenerate`."""
    return (policy or RegenerationPolicy()).should_regenerate(session, live_calendar_event_count, at_time)


# ---------------------------------------------------------------------------
# Rebuild
# ---------------------------------------------------------------------------

def regenerate_future(
    old_blocks: Sequence[AudioBlock],
    at_time: datetime,
    build_block: BlockBuilder,
    *,
    window_hours: int,
    block_minutes: int = GRID_MINUTES,
    history_hours: float | None = None,
) -> list[AudioBlock]:
    """New block run that keeps locked blocks and rebuilds the rest.

    The run covers ``window_hours`` from the grid boundary containing
    ``at_time``. Old blocks that ended before that boundary are kept as
    history for ``history_hours`` (default ``window_hours``). Inside the
    window, a locked old block is reused where it starts; the time between
    kept blocks is filled by ``build_block(index, start, end)``.
    """
    at_time = ensure_utc(at_time)
    first = grid_start(at_time, block_minutes)
    window_end = first + timedelta(hours=window_hours)
    history_cutoff = first - timedelta(hours=window_hours if history_hours is None else history_hours)
    step = timedelta(minutes=block_minutes)

    ordered = sorted(old_blocks, key=lambda b: b.start_time)
    history = [b for b in ordered if history_cutoff < b.end_time <= first]
    kept = [b for b in ordered if b.end_time > first and block_is_locked(b, at_time)]
    kept_by_start = {b.start_time: b for b in kept}
    if kept:
        window_end = max(window_end, kept[-1].end_time)

    result: list[AudioBlock] = list(history)
    cursor = first
    # A locked block straddling the boundary (old run on another grid).
    for block in kept:
        if block.start_time < first:
            result.append(block)
            cursor = max(cursor, block.end_time)
    index = 0
    replaced = 0
    while cursor < window_end:
        existing = kept_by_start.get(cursor)
        if existing is not None:
            result.append(existing)
            cursor = existing.end_time
        else:
            upcoming_kept = [b.start_time for b in kept if b.start_time > cursor]
            end = min([cursor + step, *upcoming_kept])
            result.append(build_block(index, cursor, end))
            replaced += 1
            cursor = end
        index += 1

    logger.info(
        "Regenerated future slice: kept %d locked block(s), %d history, rebuilt %d",
        len(kept), len(history), replaced,
    )
    return result


def shuffle_next_track(block: AudioBlock, at_time: datetime, track: Track) -> AudioBlock | None:
    """Swap the next future, unlocked music segment for ``track``.

    The slot keeps its timing and duration. Returns None when there is no
    such segment.
    """
    at_time = ensure_utc(at_time)
    target: MusicSegment | None = None
    for seg in block.music_segments:
        if not is_locked(seg, block, at_time):
            target = seg
            break
    if target is None:
        return None

    swapped = replace(target, track_uri=track.uri, track_name=track.name, artist=track.artist)
    music = tuple(swapped if seg is target else seg for seg in block.music_segments)
    updated = block.with_segments(music_segments=music)
    assert_only_future_changed(block, updated, at_time)
    return updated
