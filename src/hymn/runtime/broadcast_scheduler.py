"""
Broadcast Scheduler.

Generates a bounded run of contiguous blocks covering a look-ahead window,
aligned to the block grid. Each block is resolved (strategy + voice), then
assembled (timing), then checked against the segment contract.

One bad block never aborts the run: any unexpected failure for a block index
is replaced by :func:`create_fallback_block` for that index only. An assembled
block that violates the contract is a defect; with ``fail_loudly`` it is
raised, otherwise the fallback block is emitted instead.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from hymn.infra.exceptions import ValidationError
from hymn.runtime.block_assembler import (
    DEFAULT_FADE_SECONDS,
    assemble_block,
    block_id_for,
)
from hymn.runtime.collaborators import (
    CatalogTrackSource,
    MusicCatalog,
    fallback_tracks,
)
from hymn.runtime.grid import GRID_MINUTES, block_range, grid_start, next_boundary
from hymn.runtime.segment_types import (
    AudioBlock,
    BlockStrategy,
    CalendarEvent,
    MusicSegment,
    NewsItem,
    TasteProfile,
    UserPreferences,
    ensure_aware,
    validate_block,
)
from hymn.runtime.strategy_resolver import StrategyResolver

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 12

_FALLBACK_STYLES = ("focus", "ambient", "energetic", "upbeat")
_FALLBACK_VOLUME = 0.6


@dataclass(frozen=True)
class ScheduleContext:
    """Everything the resolver reads while a schedule is generated."""

    events: Sequence[CalendarEvent] = ()
    news: Sequence[NewsItem] = ()
    preferences: UserPreferences = field(default_factory=UserPreferences)
    taste_profile: TasteProfile | None = None
    # Local zone for day parts and spoken times; None keeps block times as given
    timezone: tzinfo | None = None


def create_fallback_block(
    start_time: datetime,
    end_time: datetime,
    index: int,
    generated_at: datetime | None = None,
) -> AudioBlock:
    """Minimal static block: one full-duration music segment, no voice."""
    style = _FALLBACK_STYLES[index % len(_FALLBACK_STYLES)]
    pool = fallback_tracks(style)
    track = pool[index % len(pool)]
    block_seconds = (end_time - start_time).total_seconds()
    fade = min(DEFAULT_FADE_SECONDS, block_seconds / 2)
    return AudioBlock(
        id=block_id_for(start_time, prefix="fallback-block"),
        start_time=start_time,
        end_time=end_time,
        strategy=BlockStrategy(
            music_style=style,
            music_volume=_FALLBACK_VOLUME,
            voice_frequency="none",
            interruption_level="low",
            reasoning="Static fallback block",
        ),
        music_segments=(
            MusicSegment(
                timing=0.0,
                duration=block_seconds,
                track_uri=track.uri,
                volume=_FALLBACK_VOLUME,
                fade_in=fade,
                fade_out=fade,
            ),
        ),
        generated_at=generated_at,
    )


def next_regeneration_time(at_time: datetime, block_duration_minutes: int = GRID_MINUTES) -> datetime:
    """The next block boundary after ``at_time``; the earliest useful regeneration point."""
    return next_boundary(ensure_aware(at_time), block_duration_minutes)


class BroadcastScheduler:
    """Builds block runs from a resolver and an optional music catalog."""

    def __init__(
        self,
        resolver: StrategyResolver | None = None,
        catalog: MusicCatalog | None = None,
        *,
        timeout_seconds: float | None = 20.0,
        fail_loudly: bool = False,
    ) -> None:
        self._resolver = resolver or StrategyResolver(timeout_seconds=timeout_seconds)
        self._catalog = catalog
        self._timeout_s = timeout_seconds
        self._fail_loudly = fail_loudly

    def generate_schedule(
        self,
        window_start: datetime,
        window_hours: int = DEFAULT_WINDOW_HOURS,
        block_duration_minutes: int = GRID_MINUTES,
        context: ScheduleContext | None = None,
        *,
        now: datetime | None = None,
    ) -> list[AudioBlock]:
        """Return ``window_hours * 60 / block_duration_minutes`` contiguous blocks.

        The first block starts at the grid boundary containing ``window_start``.

        Raises:
            ValidationError: the window does not hold a whole, positive number
                of blocks.
            InvariantViolation: an assembled block broke the segment contract
                and the scheduler was built with ``fail_loudly``.
        """
        if window_hours <= 0 or block_duration_minutes <= 0:
            raise ValidationError("window_hours and block_duration_minutes must be positive")
        total_minutes = window_hours * 60
        if total_minutes % block_duration_minutes:
            raise ValidationError(
                f"{window_hours}h window is not a whole number of "
                f"{block_duration_minutes}-minute blocks"
            )
        count = total_minutes // block_duration_minutes
        context = context or ScheduleContext()
        window_start = ensure_aware(window_start)
        generated_at = now or window_start

        logger.info(
            "Generating %d block(s) of %d min from %s",
            count, block_duration_minutes,
            grid_start(window_start, block_duration_minutes).isoformat(),
        )

        blocks: list[AudioBlock] = []
        fallbacks = 0
        for index in range(count):
            start, end = block_range(window_start, index, block_duration_minutes)
            block = self._build_block(index, start, end, context, generated_at)
            if block.id.startswith("fallback-block"):
                fallbacks += 1
            blocks.append(block)

        if fallbacks:
            logger.warning("Schedule generated with %d/%d fallback block(s)", fallbacks, count)
        return blocks

    def generate_block(
        self,
        index: int,
        start: datetime,
        end: datetime,
        context: ScheduleContext | None = None,
        *,
        generated_at: datetime | None = None,
    ) -> AudioBlock:
        """Build a single block; same failure handling as :meth:`generate_schedule`."""
        return self._build_block(index, start, end, context or ScheduleContext(), generated_at or start)

    def _build_block(
        self,
        index: int,
        start: datetime,
        end: datetime,
        context: ScheduleContext,
        generated_at: datetime,
    ) -> AudioBlock:
        try:
            resolved = self._resolver.resolve(
                context.events,
                context.news,
                context.preferences,
                start,
                context.taste_profile,
                block_end=end,
                block_index=index,
                tz=context.timezone,
            )
            tracks = CatalogTrackSource(
                self._catalog,
                taste_profile=context.taste_profile,
                exploration_level=context.preferences.exploration_level,
                block_index=index,
                timeout_seconds=self._timeout_s,
            )
            block = assemble_block(
                start,
                end,
                resolved.strategy,
                resolved.voice_segments,
                tracks,
                generated_at=generated_at,
            )
        except Exception:
            logger.warning(
                "Block %d at %s failed to build; substituting fallback block",
                index, start.isoformat(), exc_info=True,
            )
            return create_fallback_block(start, end, index, generated_at)

        violation = validate_block(block)
        if violation is not None:
            if self._fail_loudly:
                raise violation
            logger.error("Block %d failed validation (%s); substituting fallback block", index, violation)
            return create_fallback_block(start, end, index, generated_at)
        return block


def generate_schedule(
    window_start: datetime,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    block_duration_minutes: int = GRID_MINUTES,
    context: ScheduleContext | None = None,
    *,
    scheduler: BroadcastScheduler | None = None,
    now: datetime | None = None,
) -> list[AudioBlock]:
    """Functional form of :meth:`BroadcastScheduler.generate_schedule`."""
    return (scheduler or BroadcastScheduler()).generate_schedule(
        window_start, window_hours, block_duration_minutes, context, now=now
    )
