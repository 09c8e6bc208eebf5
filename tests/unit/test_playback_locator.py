"""
Unit tests for the live playback locator.

The locator is a pure function of (block, at_time); these tests pin the
live/gap/off-air rules and the up-next/past partitions.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hymn.infra.exceptions import InvalidBlockError
from hymn.runtime.playback_locator import (
    PlaybackStatus,
    locate,
    locate_in_schedule,
    past,
    time_until_next_block,
    upcoming,
)
from hymn.runtime.segment_types import AudioBlock, BlockStrategy, MusicSegment, VoiceSegment

T = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

STRATEGY = BlockStrategy(
    music_style="focus", music_volume=0.5, voice_frequency="minimal", interruption_level="low"
)

VOICE = VoiceSegment(id="v1", timing=0, content="Good morning", duration=30)
MUSIC = MusicSegment(timing=30, duration=770, track_uri="spotify:track:a")


def _block(start=T, seconds=800, voice=(VOICE,), music=(MUSIC,), block_id="b1") -> AudioBlock:
    return AudioBlock(
        id=block_id,
        start_time=start,
        end_time=start + timedelta(seconds=seconds),
        strategy=STRATEGY,
        voice_segments=tuple(voice),
        music_segments=tuple(music),
    )


class TestLocate:
    def test_voice_is_live_at_fifteen_seconds(self):
        pos = locate(_block(), T + timedelta(seconds=15))
        assert pos.is_live
        assert pos.segment == VOICE
        assert pos.segment_type == "voice"
        assert pos.position_in_segment == 15
        assert pos.total_elapsed == 15

    def test_music_is_live_at_one_hundred_seconds(self):
        pos = locate(_block(), T + timedelta(seconds=100))
        assert pos.segment == MUSIC
        assert pos.segment_type == "music"
        assert pos.position_in_segment == 70

    def test_after_block_end_is_not_live(self):
        pos = locate(_block(), T + timedelta(seconds=900))
        assert not pos.is_live
        assert pos.status is PlaybackStatus.ENDED
        assert pos.segment is None
        assert pos.total_elapsed == 900

    def test_exact_end_is_not_live(self):
        pos = locate(_block(), T + timedelta(seconds=800))
        assert pos.status is PlaybackStatus.ENDED

    def test_before_block_start_is_not_live(self):
        pos = locate(_block(), T - timedelta(seconds=5))
        assert pos.status is PlaybackStatus.NOT_STARTED
        assert pos.total_elapsed == -5

    def test_segment_boundary_belongs_to_next_segment(self):
        pos = locate(_block(), T + timedelta(seconds=30))
        assert pos.segment == MUSIC
        assert pos.position_in_segment == 0

    def test_gap_reports_transition_silence(self):
        music = MusicSegment(timing=40, duration=760, track_uri="spotify:track:a")
        pos = locate(_block(music=(music,)), T + timedelta(seconds=35))
        assert pos.status is PlaybackStatus.GAP
        assert pos.segment is None
        assert pos.total_elapsed == 35

    def test_is_pure(self):
        block = _block()
        at = T + timedelta(seconds=123.5)
        assert locate(block, at) == locate(block, at)

    def test_inverted_block_is_rejected(self):
        block = AudioBlock(id="bad", start_time=T, end_time=T - timedelta(seconds=1), strategy=STRATEGY)
        with pytest.raises(InvalidBlockError):
            locate(block, T)


class TestLocateInSchedule:
    def test_picks_the_covering_block(self):
        first = _block(block_id="b1")
        second = _block(start=T + timedelta(seconds=800), block_id="b2")
        assert locate_in_schedule([first, second], T + timedelta(seconds=799)) is first
        assert locate_in_schedule([first, second], T + timedelta(seconds=800)) is second

    def test_outside_schedule(self):
        assert locate_in_schedule([_block()], T + timedelta(hours=1)) is None
        assert locate_in_schedule([], T) is None


class TestPartitions:
    def test_upcoming_and_past(self):
        block = _block()
        assert upcoming(block, 15) == [MUSIC]
        assert past(block, 15) == []
        assert past(block, 30) == [VOICE]
        assert upcoming(block, 30) == []

    def test_time_until_next_block(self):
        block = _block()
        assert time_until_next_block(block, T + timedelta(seconds=100)) == 700
        assert time_until_next_block(block, T + timedelta(seconds=900)) == 0
