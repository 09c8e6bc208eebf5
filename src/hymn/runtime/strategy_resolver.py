"""
Content Strategy Resolver.

Decides a block's qualitative strategy and its voice segment contents from
calendar, news, preferences and time of day. The actual text normally comes
from a :class:`ContentGenerator`; this module owns the contract around it:

- the generator's answer is validated (pydantic) before anything is built
  from it;
- any failure (error, timeout, malformed answer) is absorbed and replaced by
  a deterministic rule-based strategy and DJ text, so resolving never fails;
- every returned voice segment carries a fresh unique id, a timing relative
  to the block start and an estimated duration.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from hymn.infra.exceptions import MalformedResponse, UpstreamError
from hymn.runtime.collaborators import ContentGenerator, call_with_timeout
from hymn.runtime.grid import GRID_MINUTES
from hymn.runtime.segment_types import (
    BlockStrategy,
    CalendarEvent,
    NewsItem,
    TasteProfile,
    UserPreferences,
    VoiceSegment,
    ensure_aware,
)

logger = logging.getLogger(__name__)

# Speaking rate used to estimate voice durations (~150 words per minute).
WORDS_PER_SECOND = 2.5
MIN_VOICE_SECONDS = 3.0

# Generators sometimes answer with epoch seconds instead of block offsets.
_EPOCH_SECONDS_FLOOR = 1_000_000_000

BREAKS_BY_FREQUENCY: dict[str, int] = {"none": 0, "minimal": 1, "moderate": 2, "active": 3}


# ---------------------------------------------------------------------------
# Generator response schema
# ---------------------------------------------------------------------------

class GeneratedStrategy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    music_style: Literal["ambient", "focus", "energetic", "upbeat", "calm", "silent"] = Field(
        validation_alias=AliasChoices("musicStyle", "music_style")
    )
    music_volume: float = Field(
        ge=0.0, le=1.0, validation_alias=AliasChoices("musicVolume", "music_volume")
    )
    voice_frequency: Literal["none", "minimal", "moderate", "active"] = Field(
        validation_alias=AliasChoices("voiceFrequency", "voice_frequency")
    )
    interruption_level: Literal["none", "low", "medium", "high"] = Field(
        validation_alias=AliasChoices("interruptionLevel", "interruption_level")
    )
    reasoning: str = ""


class GeneratedVoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timing: float = Field(default=0.0, ge=0.0)
    content: str = Field(min_length=1)
    duration: float | None = Field(default=None, gt=0.0)
    priority: Literal["low", "medium", "high"] = "medium"


class GeneratedContent(BaseModel):
    """Validated shape of a content generator's answer."""

    model_config = ConfigDict(extra="ignore")

    strategy: GeneratedStrategy
    voice_segments: list[GeneratedVoice] = Field(
        default_factory=list,
        validation_alias=AliasChoices("voiceSegments", "voiceContent", "voice_segments"),
    )
    music_description: str = Field(
        default="",
        validation_alias=AliasChoices("musicDescription", "musicRecommendation", "music_description"),
    )


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedContent:
    strategy: BlockStrategy
    voice_segments: tuple[VoiceSegment, ...] = ()
    music_description: str = ""
    source: Literal["generated", "fallback"] = "generated"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def estimate_speech_seconds(text: str) -> float:
    """Rough spoken duration of ``text`` in whole seconds."""
    words = len(text.split())
    return max(MIN_VOICE_SECONDS, float(math.ceil(words / WORDS_PER_SECOND)))


def new_voice_id() -> str:
    return f"voice-{uuid.uuid4().hex}"


def day_part(hour: int) -> str:
    if 5 <= hour < 8:
        return "early-morning"
    if 8 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def clock_time(when: datetime, reference: datetime) -> str:
    """``HH:MM`` of ``when`` on the wall clock of ``reference``'s zone."""
    return ensure_aware(when).astimezone(reference.tzinfo).strftime("%H:%M")


@dataclass
class EventMix:
    meetings: int = 0
    focus: int = 0
    breaks: int = 0
    other: int = 0
    summaries: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.meetings + self.focus + self.breaks + self.other


def classify_events(events: Sequence[CalendarEvent]) -> EventMix:
    """Bucket events into meetings, focus time, breaks and everything else."""
    mix = EventMix()
    for event in events:
        summary = event.summary.lower()
        if event.attendees or "meeting" in summary or "call" in summary:
            mix.meetings += 1
        elif "focus" in summary or "deep work" in summary:
            mix.focus += 1
        elif "break" in summary or "lunch" in summary:
            mix.breaks += 1
        else:
            mix.other += 1
        mix.summaries.append(event.summary)
    return mix


def events_in_window(
    events: Sequence[CalendarEvent], start: datetime, end: datetime
) -> list[CalendarEvent]:
    return sorted((e for e in events if e.overlaps(start, end)), key=lambda e: e.start)


def determine_mood(hour: int, mix: EventMix, block_index: int) -> str:
    """Rule-based mood: calendar first, then a day-part palette keyed by block index."""
    if mix.meetings:
        return "ambient"
    if mix.focus:
        return "focus"
    if mix.breaks:
        return "upbeat"

    part = day_part(hour)
    if part == "early-morning":
        return "calm"
    if part == "morning":
        return "focus" if block_index % 2 == 0 else "energetic"
    if part == "afternoon":
        return "upbeat" if block_index % 3 == 0 else "focus"
    if part == "evening":
        return "ambient" if block_index % 2 == 0 else "calm"
    return "calm"


_VOLUME_BY_MOOD = {"ambient": 0.4, "focus": 0.5, "calm": 0.5, "energetic": 0.75, "upbeat": 0.7}

_PREFERENCE_TO_FREQUENCY = {"minimal": "minimal", "moderate": "moderate", "active": "active"}
_PREFERENCE_TO_INTERRUPTION = {"minimal": "low", "moderate": "medium", "active": "high"}


def fallback_strategy(
    preferences: UserPreferences, at_time: datetime, mix: EventMix, block_index: int
) -> BlockStrategy:
    mood = determine_mood(at_time.hour, mix, block_index)

    if mix.meetings:
        voice_frequency, interruption = "minimal", "low"
        reason = f"{mix.meetings} meeting(s) overlap this block; keeping it ambient and quiet"
    elif mix.focus:
        voice_frequency, interruption = "minimal", "none"
        reason = "focus time on the calendar; minimal interruptions"
    else:
        voice_frequency = _PREFERENCE_TO_FREQUENCY.get(preferences.interruption_level, "moderate")
        interruption = _PREFERENCE_TO_INTERRUPTION.get(preferences.interruption_level, "medium")
        reason = f"{day_part(at_time.hour)} block {block_index} with an open calendar"

    return BlockStrategy(
        music_style=mood,
        music_volume=_VOLUME_BY_MOOD.get(mood, 0.7),
        voice_frequency=voice_frequency,
        interruption_level=interruption,
        reasoning=f"Rule-based fallback: {reason}",
    )


_DJ_INTROS = (
    "Hey there, it's Hymn - your personal DJ!",
    "What's up! Hymn here with your next block.",
    "Alright, tuning into your vibe right now.",
    "Hey! Let's keep this energy going.",
)

_CHECK_INS = (
    "Quick check-in - how are you feeling? Keep up the great energy!",
    "Perfect soundtrack for right now. Let's go!",
    "Staying focused. You're doing amazing!",
)


def fallback_voice_lines(
    at_time: datetime,
    events: Sequence[CalendarEvent],
    news: Sequence[NewsItem],
    block_index: int,
    count: int,
    taste_profile: TasteProfile | None = None,
) -> list[str]:
    """Deterministic DJ lines: an intro followed by up to ``count - 1`` breaks."""
    if count <= 0:
        return []

    part = day_part(at_time.hour)
    intro = _DJ_INTROS[block_index % len(_DJ_INTROS)]
    artist = taste_profile.top_artists[0] if taste_profile and taste_profile.top_artists else None

    if events:
        nxt = events[0]
        when = clock_time(nxt.start, at_time)
        if part in ("early-morning", "morning"):
            opener = f"{intro} Coming up at {when} - {nxt.summary}. Let's get ready with some good vibes."
        elif part == "afternoon":
            opener = f"Afternoon check-in! You've got {nxt.summary} on deck. Here's some energy to keep you sharp."
        else:
            opener = f"Evening mode! Still got {nxt.summary} on your calendar. Let's finish strong."
    elif part in ("early-morning", "morning"):
        opener = f"{intro} You've got some free time this morning. Perfect for deep work. Let's get it!"
    elif part == "afternoon":
        opener = "Afternoon energy! You're in the flow. Keep that momentum going strong!"
    else:
        opener = "Evening session! Time to relax and recharge. Great work today!"
    if artist:
        opener = f"{opener} Here's some {artist} to set the mood."

    lines = [opener]
    headlines = [n.title for n in news if n.title]
    i = 0
    while len(lines) < count:
        if i < len(headlines):
            lines.append(f"Quick headline: {headlines[i]}.")
        else:
            lines.append(_CHECK_INS[(block_index + i) % len(_CHECK_INS)])
        i += 1
    return lines


def _normalize_timing(timing: float, block_start: datetime, block_seconds: float) -> float:
    if timing >= _EPOCH_SECONDS_FLOOR:
        timing = timing - block_start.timestamp()
    return min(max(0.0, timing), max(0.0, block_seconds))


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class StrategyResolver:
    """Resolve a block strategy and voice segments. Never raises for upstream trouble.

    ``generator=None`` means no content generator is configured; the
    rule-based fallback is used for every block.
    """

    def __init__(
        self,
        generator: ContentGenerator | None = None,
        *,
        timeout_seconds: float | None = 20.0,
    ) -> None:
        self._generator = generator
        self._timeout_s = timeout_seconds

    def resolve(
        self,
        events: Sequence[CalendarEvent],
        news: Sequence[NewsItem],
        preferences: UserPreferences,
        at_time: datetime,
        taste_profile: TasteProfile | None = None,
        *,
        block_end: datetime | None = None,
        block_index: int = 0,
        tz: tzinfo | None = None,
    ) -> ResolvedContent:
        """Strategy and voice lines for the block starting at ``at_time``.

        With ``tz``, day parts and spoken times follow that zone's wall clock
        instead of the zone ``at_time`` arrives in.
        """
        at_time = ensure_aware(at_time)
        block_end = ensure_aware(block_end) if block_end else at_time + timedelta(minutes=GRID_MINUTES)
        block_seconds = (block_end - at_time).total_seconds()
        block_events = events_in_window(events, at_time, block_end)
        local_time = at_time.astimezone(tz) if tz is not None else at_time

        if self._generator is not None:
            try:
                raw = call_with_timeout(
                    self._generator.generate,
                    self._timeout_s,
                    list(block_events),
                    list(news),
                    preferences,
                    local_time,
                    taste_profile,
                    name="content-generator",
                )
                return self._from_generated(raw, at_time, block_seconds)
            except UpstreamError as exc:
                logger.warning(
                    "Content generation failed for block %d at %s (%s): %s; using fallback",
                    block_index, at_time.isoformat(), exc.error_code, exc,
                )
            except Exception:
                logger.warning(
                    "Content generation raised for block %d at %s; using fallback",
                    block_index, at_time.isoformat(), exc_info=True,
                )

        return self._fallback(block_events, news, preferences, local_time, taste_profile, block_index)

    def _from_generated(self, raw: object, at_time: datetime, block_seconds: float) -> ResolvedContent:
        try:
            content = GeneratedContent.model_validate(raw)
        except PydanticValidationError as exc:
            raise MalformedResponse(
                f"content generator answer failed validation ({exc.error_count()} errors)"
            ) from exc

        s = content.strategy
        strategy = BlockStrategy(
            music_style=s.music_style,
            music_volume=s.music_volume,
            voice_frequency=s.voice_frequency,
            interruption_level=s.interruption_level,
            reasoning=s.reasoning,
        )
        voices = tuple(
            VoiceSegment(
                id=new_voice_id(),
                timing=_normalize_timing(v.timing, at_time, block_seconds),
                content=v.content.strip(),
                duration=v.duration or estimate_speech_seconds(v.content),
                priority=v.priority,
            )
            for v in sorted(content.voice_segments, key=lambda v: v.timing)
            if v.content.strip()
        )
        return ResolvedContent(
            strategy=strategy,
            voice_segments=voices,
            music_description=content.music_description,
            source="generated",
        )

    def _fallback(
        self,
        block_events: Sequence[CalendarEvent],
        news: Sequence[NewsItem],
        preferences: UserPreferences,
        at_time: datetime,
        taste_profile: TasteProfile | None,
        block_index: int,
    ) -> ResolvedContent:
        mix = classify_events(block_events)
        strategy = fallback_strategy(preferences, at_time, mix, block_index)
        count = 1 + BREAKS_BY_FREQUENCY[strategy.voice_frequency] if strategy.voice_frequency != "none" else 0
        lines = fallback_voice_lines(at_time, block_events, news, block_index, count, taste_profile)
        voices = tuple(
            VoiceSegment(
                id=new_voice_id(),
                timing=0.0,
                content=line,
                duration=estimate_speech_seconds(line),
                priority="high" if i == 0 else "medium",
            )
            for i, line in enumerate(lines)
        )
        return ResolvedContent(
            strategy=strategy,
            voice_segments=voices,
            music_description=f"{strategy.music_style} music for the {day_part(at_time.hour)}",
            source="fallback",
        )


def resolve_strategy(
    events: Sequence[CalendarEvent],
    news: Sequence[NewsItem],
    preferences: UserPreferences,
    at_time: datetime,
    taste_profile: TasteProfile | None = None,
    *,
    generator: ContentGenerator | None = None,
    timeout_seconds: float | None = 20.0,
    block_end: datetime | None = None,
    block_index: int = 0,
    tz: tzinfo | None = None,
) -> ResolvedContent:
    """Functional form of :meth:`StrategyResolver.resolve`."""
    return StrategyResolver(generator, timeout_seconds=timeout_seconds).resolve(
        events,
        news,
        preferences,
        at_time,
        taste_profile,
        block_end=block_end,
        block_index=block_index,
        tz=tz,
    )
