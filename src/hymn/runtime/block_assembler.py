"""
Block Assembler.

Lays voice and music out on a block's time axis. Voice offsets are reserved
first (an intro at 0 and evenly spaced breaks set by ``voice_frequency``);
music then fills the free intervals in order, each track at its natural
length, the last track of an interval truncated at the next voice offset or
the block end. Voice always wins: music is only ever placed into time no
voice segment claims, so the output satisfies the containment/overlap
contract by construction.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from hymn.infra.exceptions import InvalidBlockError
from hymn.runtime.collaborators import TrackSource
from hymn.runtime.segment_types import (
    AudioBlock,
    BlockStrategy,
    MusicSegment,
    VoiceSegment,
    ensure_utc,
)
from hymn.runtime.strategy_resolver import BREAKS_BY_FREQUENCY

logger = logging.getLogger(__name__)

DEFAULT_FADE_SECONDS = 2.0
# Free time shorter than this is left as transition silence.
MIN_MUSIC_SECONDS = 1.0
# Used to size the track request; real tracks carry their own durations.
TYPICAL_TRACK_SECONDS = 180.0


def block_id_for(start_time: datetime, prefix: str = "block") -> str:
    return f"{prefix}-{int(ensure_utc(start_time).timestamp() * 1000)}"


def voice_offsets(block_seconds: float, voice_frequency: str) -> list[float]:
    """Offsets reserved for voice: 0 plus ``breaks`` evenly spaced whole seconds."""
    breaks = BREAKS_BY_FREQUENCY.get(voice_frequency, 0)
    offsets = [0.0]
    for k in range(1, breaks + 1):
        offsets.append(float(math.floor(block_seconds * k / (breaks + 1))))
    return offsets


def place_voice(
    voice_segments: Sequence[VoiceSegment], block_seconds: float, voice_frequency: str
) -> list[VoiceSegment]:
    """Pin voice segments onto reserved offsets, clipping each to its slot.

    Segments beyond the number of reserved offsets are dropped.
    """
    offsets = voice_offsets(block_seconds, voice_frequency)
    ordered = sorted(voice_segments, key=lambda v: v.timing)
    if len(ordered) > len(offsets):
        logger.debug(
            "Dropping %d voice segment(s) beyond %d reserved offsets",
            len(ordered) - len(offsets), len(offsets),
        )

    placed: list[VoiceSegment] = []
    for i, (seg, offset) in enumerate(zip(ordered, offsets)):
        slot_end = offsets[i + 1] if i + 1 < len(offsets) else block_seconds
        duration = min(seg.duration, slot_end - offset, block_seconds - offset)
        if duration <= 0:
            continue
        placed.append(replace(seg, timing=offset, duration=duration))
    return placed


def free_intervals(
    voice: Sequence[VoiceSegment], block_seconds: float
) -> list[tuple[float, float]]:
    """[start, end) spans of the block not claimed by voice, in order."""
    intervals: list[tuple[float, float]] = []
    cursor = 0.0
    for seg in sorted(voice, key=lambda v: v.timing):
        if seg.timing > cursor:
            intervals.append((cursor, seg.timing))
        cursor = max(cursor, seg.end)
    if cursor < block_seconds:
        intervals.append((cursor, block_seconds))
    return intervals


def assemble_block(
    start_time: datetime,
    end_time: datetime,
    strategy: BlockStrategy,
    voice_segments: Sequence[VoiceSegment],
    track_source: TrackSource,
    *,
    block_id: str | None = None,
    generated_at: datetime | None = None,
) -> AudioBlock:
    """Build an :class:`AudioBlock` for ``[start_time, end_time)``.

    Raises:
        InvalidBlockError: ``end_time`` is not after ``start_time``.
    """
    start_time = ensure_utc(start_time)
    end_time = ensure_utc(end_time)
    block_seconds = (end_time - start_time).total_seconds()
    if block_seconds <= 0:
        raise InvalidBlockError(
            f"Block end {end_time.isoformat()} must be after start {start_time.isoformat()}"
        )

    voice = place_voice(voice_segments, block_seconds, strategy.voice_frequency)

    music: list[MusicSegment] = []
    if strategy.music_style != "silent":
        wanted = math.ceil(block_seconds / TYPICAL_TRACK_SECONDS) + 1
        tracks = [t for t in track_source.tracks_for(strategy, wanted) if t.duration_seconds > 0]
        if not tracks:
            logger.warning(
                "No tracks for %s block at %s; leaving music time silent",
                strategy.music_style, start_time.isoformat(),
            )
        else:
            pool = itertools.cycle(tracks)
            for interval_start, interval_end in free_intervals(voice, block_seconds):
                cursor = interval_start
                while interval_end - cursor >= MIN_MUSIC_SECONDS:
                    track = next(pool)
                    duration = min(track.duration_seconds, interval_end - cursor)
                    fade = min(DEFAULT_FADE_SECONDS, duration / 2)
                    music.append(MusicSegment(
                        timing=cursor,
                        duration=duration,
                        track_uri=track.uri,
                        volume=strategy.music_volume,
                        fade_in=fade,
                        fade_out=fade,
                        track_name=track.name,
                        artist=track.artist,
                    ))
                    cursor += duration

    return AudioBlock(
        id=block_id or block_id_for(start_time),
        start_time=start_time,
        end_time=end_time,
        strategy=strategy,
        voice_segments=tuple(voice),
        music_segments=tuple(music),
        generated_at=generated_at,
    )
