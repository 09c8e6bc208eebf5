"""
Broadcast timeline types.

Canonical data structures for blocks and segments. These types are the
authoritative definitions; every runtime component and test imports from
this module rather than redefining shapes locally.

Timing model: segment ``timing`` and ``duration`` are seconds relative to the
owning block's start. Block ``start_time``/``end_time`` are timezone-aware
UTC datetimes. Gaps between segments are permitted (transition silence);
overlaps are not.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Union

from hymn.infra.exceptions import (
    ContainmentViolation,
    InvariantViolation,
    OverlapViolation,
)

Priority = Literal["low", "medium", "high"]
MusicStyle = Literal["ambient", "focus", "energetic", "upbeat", "calm", "silent"]
VoiceFrequency = Literal["none", "minimal", "moderate", "active"]
InterruptionLevel = Literal["none", "low", "medium", "high"]
ExplorationLevel = Literal["familiar", "balanced", "explorative"]

PRIORITIES: tuple[str, ...] = ("low", "medium", "high")
MUSIC_STYLES: tuple[str, ...] = ("ambient", "focus", "energetic", "upbeat", "calm", "silent")
VOICE_FREQUENCIES: tuple[str, ...] = ("none", "minimal", "moderate", "active")
INTERRUPTION_LEVELS: tuple[str, ...] = ("none", "low", "medium", "high")

# Float tolerance for containment/overlap comparisons (seconds).
TIMING_EPSILON = 1e-6


def ensure_aware(dt: datetime) -> datetime:
    """Return ``dt`` unchanged when aware; naive values are taken as UTC."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(dt: datetime) -> str:
    return ensure_utc(dt).isoformat()


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VoiceSegment:
    """A spoken DJ segment."""

    kind: ClassVar[str] = "voice"

    id: str
    timing: float
    content: str
    duration: float
    priority: str = "medium"
    audio_ref: str | None = None
    locked: bool = False

    def __post_init__(self) -> None:
        if self.priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {PRIORITIES}, got {self.priority!r}")

    @property
    def end(self) -> float:
        return self.timing + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "id": self.id,
            "timing": self.timing,
            "content": self.content,
            "duration": self.duration,
            "priority": self.priority,
            "audioRef": self.audio_ref,
            "locked": self.locked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VoiceSegment:
        return cls(
            id=str(data["id"]),
            timing=float(data["timing"]),
            content=str(data.get("content", "")),
            duration=float(data["duration"]),
            priority=str(data.get("priority", "medium")),
            audio_ref=data.get("audioRef"),
            locked=bool(data.get("locked", False)),
        )


@dataclass(frozen=True)
class MusicSegment:
    """A music track placed on the block's time axis."""

    kind: ClassVar[str] = "music"

    timing: float
    duration: float
    track_uri: str
    volume: float = 0.7
    fade_in: float = 0.0
    fade_out: float = 0.0
    track_name: str = ""
    artist: str = ""
    locked: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be within [0, 1], got {self.volume}")
        if self.fade_in < 0 or self.fade_out < 0:
            raise ValueError("fade_in/fade_out must be non-negative")

    @property
    def end(self) -> float:
        return self.timing + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "timing": self.timing,
            "duration": self.duration,
            "trackUri": self.track_uri,
            "volume": self.volume,
            "fadeIn": self.fade_in,
            "fadeOut": self.fade_out,
            "trackName": self.track_name,
            "artist": self.artist,
            "locked": self.locked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MusicSegment:
        return cls(
            timing=float(data["timing"]),
            duration=float(data["duration"]),
            track_uri=str(data["trackUri"]),
            volume=float(data.get("volume", 0.7)),
            fade_in=float(data.get("fadeIn", 0.0) or 0.0),
            fade_out=float(data.get("fadeOut", 0.0) or 0.0),
            track_name=str(data.get("trackName", "")),
            artist=str(data.get("artist", "")),
            locked=bool(data.get("locked", False)),
        )


Segment = Union[VoiceSegment, MusicSegment]


def segment_from_dict(data: dict[str, Any]) -> Segment:
    kind = data.get("type")
    if kind == VoiceSegment.kind:
        return VoiceSegment.from_dict(data)
    if kind == MusicSegment.kind:
        return MusicSegment.from_dict(data)
    raise ValueError(f"unknown segment type: {kind!r}")


# ---------------------------------------------------------------------------
# Strategy and block
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlockStrategy:
    """Qualitative decision governing how a block is assembled.

    ``reasoning`` is diagnostic text only and is never parsed.
    """

    music_style: str
    music_volume: float
    voice_frequency: str
    interruption_level: str
    reasoning: str = ""

    def __post_init__(self) -> None:
        if self.music_style not in MUSIC_STYLES:
            raise ValueError(f"music_style must be one of {MUSIC_STYLES}, got {self.music_style!r}")
        if self.voice_frequency not in VOICE_FREQUENCIES:
            raise ValueError(
                f"voice_frequency must be one of {VOICE_FREQUENCIES}, got {self.voice_frequency!r}"
            )
        if self.interruption_level not in INTERRUPTION_LEVELS:
            raise ValueError(
                f"interruption_level must be one of {INTERRUPTION_LEVELS}, "
                f"got {self.interruption_level!r}"
            )
        if not 0.0 <= self.music_volume <= 1.0:
            raise ValueError(f"music_volume must be within [0, 1], got {self.music_volume}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "musicStyle": self.music_style,
            "musicVolume": self.music_volume,
            "voiceFrequency": self.voice_frequency,
            "interruptionLevel": self.interruption_level,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockStrategy:
        return cls(
            music_style=str(data["musicStyle"]),
            music_volume=float(data["musicVolume"]),
            voice_frequency=str(data["voiceFrequency"]),
            interruption_level=str(data["interruptionLevel"]),
            reasoning=str(data.get("reasoning", "")),
        )


@dataclass(frozen=True)
class AudioBlock:
    """A timed container of voice and music segments. Immutable.

    Segment tuples are kept ordered by ``timing``. Use :func:`validate_block`
    to check the containment/overlap contract.
    """

    id: str
    start_time: datetime
    end_time: datetime
    strategy: BlockStrategy
    voice_segments: tuple[VoiceSegment, ...] = ()
    music_segments: tuple[MusicSegment, ...] = ()
    generated_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def segments(self) -> list[Segment]:
        """Voice and music merged into one sequence sorted by timing.

        Ties sort voice first so the ordering is total and stable.
        """
        merged: list[Segment] = [*self.voice_segments, *self.music_segments]
        merged.sort(key=lambda s: (s.timing, 0 if s.kind == VoiceSegment.kind else 1))
        return merged

    def with_segments(
        self,
        voice_segments: tuple[VoiceSegment, ...] | None = None,
        music_segments: tuple[MusicSegment, ...] | None = None,
    ) -> AudioBlock:
        """Copy of this block with replaced segment tuples (re-sorted)."""
        voice = self.voice_segments if voice_segments is None else voice_segments
        music = self.music_segments if music_segments is None else music_segments
        return replace(
            self,
            voice_segments=tuple(sorted(voice, key=lambda s: s.timing)),
            music_segments=tuple(sorted(music, key=lambda s: s.timing)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "strategy": self.strategy.to_dict(),
            "voiceContent": [v.to_dict() for v in self.voice_segments],
            "musicContent": [m.to_dict() for m in self.music_segments],
            "generatedAt": format_timestamp(self.generated_at) if self.generated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AudioBlock:
        generated_at = data.get("generatedAt")
        return cls(
            id=str(data["id"]),
            start_time=parse_timestamp(data["startTime"]),
            end_time=parse_timestamp(data["endTime"]),
            strategy=BlockStrategy.from_dict(data["strategy"]),
            voice_segments=tuple(VoiceSegment.from_dict(v) for v in data.get("voiceContent", [])),
            music_segments=tuple(MusicSegment.from_dict(m) for m in data.get("musicContent", [])),
            generated_at=parse_timestamp(generated_at) if generated_at else None,
        )


@dataclass
class BroadcastSession:
    """A persisted, time-bounded run of blocks shared by all viewers.

    ``voice_audio`` maps voice-segment id to an opaque rendered-audio reference.
    ``calendar_event_ids`` records the calendar events the run was generated
    against, for change detection; ``calendar_event_windows`` holds their
    start and end so events that have ended are not mistaken for deletions.
    """

    id: str
    start_time: datetime
    blocks: list[AudioBlock]
    created_at: datetime
    expires_at: datetime
    voice_audio: dict[str, str] = field(default_factory=dict)
    calendar_event_ids: tuple[str, ...] = ()
    calendar_event_windows: dict[str, tuple[datetime, datetime]] = field(default_factory=dict)

    def is_valid(self, at_time: datetime) -> bool:
        """A session is valid iff ``at_time < expires_at``."""
        return ensure_utc(at_time) < self.expires_at

    @property
    def end_time(self) -> datetime | None:
        return self.blocks[-1].end_time if self.blocks else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startTime": format_timestamp(self.start_time),
            "blocks": [b.to_dict() for b in self.blocks],
            "voiceFiles": dict(self.voice_audio),
            "createdAt": format_timestamp(self.created_at),
            "expiresAt": format_timestamp(self.expires_at),
            "calendarEventIds": list(self.calendar_event_ids),
            "calendarEventWindows": {
                event_id: {"start": format_timestamp(start), "end": format_timestamp(end)}
                for event_id, (start, end) in self.calendar_event_windows.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BroadcastSession:
        return cls(
            id=str(data["id"]),
            start_time=parse_timestamp(data["startTime"]),
            blocks=[AudioBlock.from_dict(b) for b in data.get("blocks", [])],
            created_at=parse_timestamp(data["createdAt"]),
            expires_at=parse_timestamp(data["expiresAt"]),
            voice_audio={str(k): str(v) for k, v in (data.get("voiceFiles") or {}).items()},
            calendar_event_ids=tuple(str(i) for i in data.get("calendarEventIds") or ()),
            calendar_event_windows={
                str(event_id): (parse_timestamp(span["start"]), parse_timestamp(span["end"]))
                for event_id, span in (data.get("calendarEventWindows") or {}).items()
            },
        )


# ---------------------------------------------------------------------------
# Read-only collaborator inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalendarEvent:
    id: str
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    location: str | None = None
    attendees: tuple[str, ...] = ()

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


@dataclass(frozen=True)
class NewsItem:
    title: str
    description: str = ""
    source: str = ""
    url: str = ""
    category: str = ""
    published_at: datetime | None = None


@dataclass(frozen=True)
class UserPreferences:
    news_categories: tuple[str, ...] = ("technology",)
    music_moods: tuple[str, ...] = ("focus",)
    interruption_level: str = "moderate"
    voice_persona: str = "nova"
    exploration_level: str = "balanced"


@dataclass(frozen=True)
class Track:
    uri: str
    duration_seconds: float
    name: str = ""
    artist: str = ""


@dataclass(frozen=True)
class TasteProfile:
    """Listener taste summary handed to collaborators as a seed."""

    top_artists: tuple[str, ...] = ()
    top_genres: tuple[str, ...] = ()
    top_track_uris: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_block(block: AudioBlock) -> InvariantViolation | None:
    """Check a block against the containment and overlap contract.

    Returns None when the block is valid, otherwise the first violation found
    (a :class:`ContainmentViolation` or an :class:`OverlapViolation`). No side
    effects.
    """
    duration = block.duration_seconds
    if duration <= 0:
        return ContainmentViolation(
            block.id, f"end_time must be after start_time (duration={duration}s)"
        )

    merged = block.segments()
    for seg in merged:
        if seg.timing < 0:
            return ContainmentViolation(block.id, f"{seg.kind} segment starts before 0 ({seg.timing}s)")
        if seg.duration <= 0:
            return ContainmentViolation(
                block.id, f"{seg.kind} segment at {seg.timing}s has non-positive duration"
            )
        if seg.end > duration + TIMING_EPSILON:
            return ContainmentViolation(
                block.id,
                f"{seg.kind} segment at {seg.timing}s ends at {seg.end}s, "
                f"past block duration {duration}s",
            )

    for left, right in zip(merged, merged[1:]):
        if left.end > right.timing + TIMING_EPSILON:
            return OverlapViolation(
                block.id,
                f"{left.kind} segment [{left.timing}, {left.end}) overlaps "
                f"{right.kind} segment starting at {right.timing}",
            )
    return None


def ensure_valid_block(block: AudioBlock) -> AudioBlock:
    """Raise the violation found by :func:`validate_block`, else return ``block``."""
    violation = validate_block(block)
    if violation is not None:
        raise violation
    return block
