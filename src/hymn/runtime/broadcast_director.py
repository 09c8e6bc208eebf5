"""Broadcast Director

Wall-clock-driven orchestrator over the session store, scheduler and
regeneration policy. It is the single writer of the shared session:

- ``tune_in()`` answers "what plays now" for any client, creating the
  session on first use;
- ``evaluate_once()`` checks the regeneration policy and rebuilds the
  unlocked future slice when it fires;
- ``start()``/``stop()`` run ``evaluate_once()`` on a background daemon
  thread.

Writes (creation, regeneration, shuffles) are serialized by one director
lock, so a shuffle never overwrites a concurrent regeneration or the reverse.

Collaborator failures (calendar, news, speech) never stop the broadcast. A
calendar that cannot be read counts as "no change"; news that cannot be read
leaves the blocks without headlines.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from hymn.infra.exceptions import UpstreamError
from hymn.runtime.broadcast_scheduler import (
    BroadcastScheduler,
    ScheduleContext,
    next_regeneration_time,
)
from hymn.runtime.clock import Clock, MasterClock
from hymn.runtime.collaborators import (
    CalendarSource,
    NewsSource,
    call_with_timeout,
    fallback_tracks,
)
from hymn.runtime.grid import GRID_MINUTES
from hymn.runtime.playback_locator import (
    PlaybackPosition,
    locate,
    locate_in_schedule,
    time_until_next_block,
    upcoming,
)
from hymn.runtime.regeneration_policy import (
    RegenerationPolicy,
    is_locked,
    regenerate_future,
    shuffle_next_track,
)
from hymn.runtime.segment_types import (
    AudioBlock,
    BroadcastSession,
    CalendarEvent,
    NewsItem,
    Segment,
    Track,
    VoiceSegment,
    ensure_utc,
    format_timestamp,
)
from hymn.runtime.session_store import SessionStore
from hymn.runtime.voice_renderer import VoiceRenderer


@dataclass(frozen=True)
class NowPlaying:
    """Tune-in answer: the live block, live segment and what comes next."""

    session_id: str
    at_time: datetime
    block: AudioBlock | None
    position: PlaybackPosition | None
    up_next: tuple[Segment, ...] = ()
    seconds_until_next_block: float | None = None
    voice_audio_ref: str | None = None

    @property
    def is_live(self) -> bool:
        return self.position is not None and self.position.is_live

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "at": format_timestamp(self.at_time),
            "blockId": self.block.id if self.block else None,
            "blockStart": format_timestamp(self.block.start_time) if self.block else None,
            "blockEnd": format_timestamp(self.block.end_time) if self.block else None,
            "strategy": self.block.strategy.to_dict() if self.block else None,
            "position": self.position.to_dict() if self.position else None,
            "upNext": [seg.to_dict() for seg in self.up_next],
            "secondsUntilNextBlock": self.seconds_until_next_block,
            "voiceAudio": self.voice_audio_ref,
        }


class BroadcastDirector:
    """Single writer of the broadcast session; answers tune-in queries."""

    def __init__(
        self,
        store: SessionStore,
        scheduler: BroadcastScheduler,
        *,
        policy: RegenerationPolicy | None = None,
        clock: Clock | None = None,
        context: ScheduleContext | None = None,
        calendar: CalendarSource | None = None,
        news: NewsSource | None = None,
        headline_count: int = 5,
        window_hours: int = 12,
        block_minutes: int = GRID_MINUTES,
        evaluation_interval_seconds: int = 60,
        timeout_seconds: float | None = 20.0,
        voice_renderer: VoiceRenderer | None = None,
        voice_persona: str = "nova",
    ):
        self._store = store
        self._scheduler = scheduler
        self._policy = policy or RegenerationPolicy()
        self._clock = clock or MasterClock()
        self._context = context or ScheduleContext()
        self._calendar = calendar
        self._news = news
        self._headline_count = headline_count
        self._window_hours = window_hours
        self._block_minutes = block_minutes
        self._eval_interval_s = evaluation_interval_seconds
        self._timeout_s = timeout_seconds
        self._voice_renderer = voice_renderer
        self._voice_persona = voice_persona
        self._logger = logging.getLogger(__name__)

        self._regeneration_count = 0
        self._last_evaluation: datetime | None = None
        self._last_reason: str | None = None

        # Held across every read-modify-write of the session
        self._write_lock = threading.RLock()

        # Background thread
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public properties (observability)
    # ------------------------------------------------------------------

    @property
    def regeneration_count(self) -> int:
        """Regenerations performed by evaluate_once()/regenerate() since init."""
        return self._regeneration_count

    @property
    def last_evaluation(self) -> datetime | None:
        return self._last_evaluation

    @property
    def last_reason(self) -> str | None:
        """Trigger of the most recent regeneration."""
        return self._last_reason

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def ensure_session(self, at_time: datetime | None = None) -> BroadcastSession:
        """The current valid session, generating one when there is none."""
        at_time = self._at(at_time)
        existing = self._store.current()
        if existing is not None and existing.is_valid(at_time):
            return existing

        events = self._fetch_events()
        with self._write_lock:
            return self._create_session(at_time, events)

    def tune_in(self, at_time: datetime | None = None) -> NowPlaying:
        """Live block, segment and offset at ``at_time`` (default: now)."""
        at_time = self._at(at_time)
        session = self.ensure_session(at_time)
        block = locate_in_schedule(session.blocks, at_time)
        if block is None:
            self._logger.warning(
                "No block is live at %s in session %s", at_time.isoformat(), session.id,
            )
            return NowPlaying(session_id=session.id, at_time=at_time, block=None, position=None)

        position = locate(block, at_time)
        audio_ref = None
        if isinstance(position.segment, VoiceSegment):
            audio_ref = position.segment.audio_ref or session.voice_audio.get(position.segment.id)
        return NowPlaying(
            session_id=session.id,
            at_time=at_time,
            block=block,
            position=position,
            up_next=tuple(upcoming(block, position.total_elapsed)),
            seconds_until_next_block=time_until_next_block(block, at_time),
            voice_audio_ref=audio_ref,
        )

    def next_regeneration_time(self, at_time: datetime | None = None) -> datetime:
        return next_regeneration_time(self._at(at_time), self._block_minutes)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def evaluate_once(self) -> bool:
        """Apply the regeneration policy once. Returns True when the session changed."""
        now = self._clock.now_utc()
        self._last_evaluation = now
        events = self._fetch_events()

        with self._write_lock:
            session = self._store.current()
            if session is None:
                self._logger.info("BroadcastDirector: no session; generating")
                self._create_session(now, events)
                self._record("missing")
                return True

            live_count: int | None = None
            live_ids: list[str] | None = None
            if events is not None:
                window_end = session.end_time or now
                live = [e for e in events if e.overlaps(now, window_end)]
                live_count = len(live)
                live_ids = self._event_ids(live)

            reason = self._policy.reason(session, live_count, now, live_ids)
            if reason is None:
                self._logger.debug(
                    "BroadcastDirector: session=%s healthy, expires=%s",
                    session.id, session.expires_at.isoformat(),
                )
                return False

            self._logger.info("BroadcastDirector: regenerating session %s (%s)", session.id, reason)
            self._rebuild(session, now, events)
            self._record(reason)
            return True

    def regenerate(self, at_time: datetime | None = None) -> BroadcastSession:
        """Operator-forced regeneration of the unlocked future slice."""
        at_time = self._at(at_time)
        events = self._fetch_events()
        with self._write_lock:
            session = self._store.current()
            if session is None:
                context = self._context_with(events)
                rebuilt = self._store.force_regenerate(
                    lambda: self._scheduler.generate_schedule(
                        at_time, self._window_hours, self._block_minutes, context, now=at_time,
                    ),
                    at_time,
                    calendar_events=tuple(events or ()),
                )
            else:
                rebuilt = self._rebuild(session, at_time, events)
            self._record("operator")
            return rebuilt

    def shuffle_next_track(
        self, track: Track | None = None, at_time: datetime | None = None
    ) -> AudioBlock | None:
        """Swap the live block's next future music segment. None when nothing is swappable.

        The swap is applied to the stored session as it is at write time, so
        blocks rebuilt by a concurrent regeneration are never reverted.
        """
        at_time = self._at(at_time)
        self.ensure_session(at_time)
        swapped: AudioBlock | None = None

        def swap(session: BroadcastSession) -> BroadcastSession | None:
            nonlocal swapped, track
            block = locate_in_schedule(session.blocks, at_time)
            if block is None:
                return None
            if track is None:
                track = self._pick_replacement(block, at_time)
                if track is None:
                    return None
            updated = shuffle_next_track(block, at_time, track)
            if updated is None:
                return None
            session.blocks = [updated if b.id == block.id else b for b in session.blocks]
            swapped = updated
            return session

        with self._write_lock:
            self._store.update(swap)
        if swapped is not None:
            self._logger.info("Shuffled next track of block %s to %s", swapped.id, track.uri)
        return swapped

    def render_voices(self, at_time: datetime | None = None) -> int:
        """Render and cache voice audio for the current session's remaining blocks."""
        if self._voice_renderer is None:
            return 0
        at_time = self._at(at_time)
        return self._voice_renderer.render_session(
            self.ensure_session(at_time), self._voice_persona, from_time=at_time
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background evaluation thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="BroadcastDirector",
            daemon=True,
        )
        self._thread.start()
        self._logger.info("BroadcastDirector: started (interval=%ds)", self._eval_interval_s)

    def stop(self) -> None:
        """Stop the background evaluation thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self._eval_interval_s + 5)
            self._thread = None
        self._logger.info("BroadcastDirector: stopped")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background loop: evaluate → sleep → repeat."""
        while not self._stop_event.is_set():
            try:
                self.evaluate_once()
            except Exception:
                self._logger.exception("BroadcastDirector: evaluation failed")
            self._stop_event.wait(timeout=self._eval_interval_s)

    def _create_session(
        self, at_time: datetime, events: Sequence[CalendarEvent] | None
    ) -> BroadcastSession:
        context = self._context_with(events)
        return self._store.get_or_create(
            lambda: self._scheduler.generate_schedule(
                at_time, self._window_hours, self._block_minutes, context, now=at_time
            ),
            at_time,
            calendar_events=tuple(events if events is not None else context.events),
        )

    @staticmethod
    def _pick_replacement(block: AudioBlock, at_time: datetime) -> Track | None:
        target = next((m for m in block.music_segments if not is_locked(m, block, at_time)), None)
        if target is None:
            return None
        pool = [t for t in fallback_tracks(block.strategy.music_style) if t.uri != target.track_uri]
        return pool[0] if pool else None

    def _rebuild(
        self,
        session: BroadcastSession,
        at_time: datetime,
        events: Sequence[CalendarEvent] | None,
    ) -> BroadcastSession:
        context = self._context_with(events)
        blocks = regenerate_future(
            session.blocks,
            at_time,
            lambda index, start, end: self._scheduler.generate_block(
                index, start, end, context, generated_at=at_time
            ),
            window_hours=self._window_hours,
            block_minutes=self._block_minutes,
        )
        rebuilt = self._store.force_regenerate(
            lambda: blocks,
            at_time,
            calendar_events=tuple(events if events is not None else context.events),
        )
        if self._voice_renderer is not None:
            self._voice_renderer.render_session(rebuilt, self._voice_persona, from_time=at_time)
        return rebuilt

    def _fetch_events(self) -> list[CalendarEvent] | None:
        """Upcoming calendar events, or None when unavailable or not connected."""
        if self._calendar is None:
            return None
        try:
            return list(call_with_timeout(
                self._calendar.get_upcoming_events,
                self._timeout_s,
                float(self._window_hours),
                name="calendar",
            ))
        except UpstreamError as exc:
            self._logger.warning("Calendar unavailable (%s): %s", exc.error_code, exc)
        except Exception:
            self._logger.warning("Calendar fetch failed", exc_info=True)
        return None

    def _fetch_news(self) -> list[NewsItem] | None:
        """Current headlines for the preferred categories, or None when unavailable."""
        if self._news is None:
            return None
        try:
            return list(call_with_timeout(
                self._news.get_headlines,
                self._timeout_s,
                list(self._context.preferences.news_categories),
                self._headline_count,
                name="news",
            ))
        except UpstreamError as exc:
            self._logger.warning("News unavailable (%s): %s", exc.error_code, exc)
        except Exception:
            self._logger.warning("News fetch failed", exc_info=True)
        return None

    def _context_with(self, events: Sequence[CalendarEvent] | None) -> ScheduleContext:
        """Schedule context with fresh events and headlines where they could be read."""
        context = self._context
        if events is not None:
            context = replace(context, events=tuple(events))
        news = self._fetch_news()
        if news is not None:
            context = replace(context, news=tuple(news))
        return context

    @staticmethod
    def _event_ids(events: Sequence[CalendarEvent]) -> list[str]:
        return sorted(e.id for e in events)

    def _record(self, reason: str) -> None:
        self._regeneration_count += 1
        self._last_reason = reason

    def _at(self, at_time: datetime | None) -> datetime:
        return ensure_utc(at_time) if at_time is not None else self._clock.now_utc()
