"""External collaborator contracts.

What the broadcast core needs from the outside world: content generation,
speech synthesis, music recommendation, calendar and news. Concrete adapters
(HTTP clients, provider SDKs) wrap providers behind these protocols; the core
never talks to a provider directly.

Every call into a collaborator crosses a latency boundary and goes through
:func:`call_with_timeout`. Past the timeout the call is abandoned (the worker
thread is left to finish on its own) and :class:`UpstreamTimeout` is raised
for the caller to absorb.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol, TypeVar, runtime_checkable

from hymn.infra.exceptions import UpstreamError, UpstreamTimeout
from hymn.runtime.segment_types import (
    BlockStrategy,
    CalendarEvent,
    NewsItem,
    TasteProfile,
    Track,
    UserPreferences,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class ContentGenerator(Protocol):
    """Turns listening context into JSON-shaped strategy and voice text.

    Expected return shape::

        {"strategy": {"musicStyle": ..., "musicVolume": ..., "voiceFrequency": ...,
                      "interruptionLevel": ..., "reasoning": ...},
         "voiceSegments": [{"timing": ..., "content": ..., "duration": ...,
                            "priority": ...}, ...],
         "musicDescription": "..."}
    """

    def generate(
        self,
        events: Sequence[CalendarEvent],
        news: Sequence[NewsItem],
        preferences: UserPreferences,
        at_time: datetime,
        taste_profile: TasteProfile | None = None,
    ) -> Mapping[str, Any]:
        ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str, voice_persona: str) -> bytes:
        ...


@runtime_checkable
class MusicCatalog(Protocol):
    def recommend(
        self,
        seed_profile: TasteProfile | None,
        mood: str,
        exploration_level: str,
        count: int,
    ) -> list[Track]:
        ...


@runtime_checkable
class CalendarSource(Protocol):
    def get_upcoming_events(self, hours_ahead: float) -> list[CalendarEvent]:
        ...


@runtime_checkable
class NewsSource(Protocol):
    def get_headlines(self, categories: Sequence[str], count: int) -> list[NewsItem]:
        ...


@runtime_checkable
class TrackSource(Protocol):
    """What the block assembler pulls music from."""

    def tracks_for(self, strategy: BlockStrategy, count: int) -> list[Track]:
        ...


# ---------------------------------------------------------------------------
# Timeout boundary
# ---------------------------------------------------------------------------

def call_with_timeout(
    fn: Callable[..., T],
    timeout_seconds: float | None,
    *args: Any,
    name: str = "collaborator",
    **kwargs: Any,
) -> T:
    """Run ``fn(*args, **kwargs)`` and give up after ``timeout_seconds``.

    ``timeout_seconds=None`` calls ``fn`` inline. On timeout the worker is
    abandoned, never joined, and :class:`UpstreamTimeout` is raised. Exceptions
    raised by ``fn`` propagate unchanged.
    """
    if timeout_seconds is None:
        return fn(*args, **kwargs)

    outcome: dict[str, Any] = {}
    done = threading.Event()

    def _run() -> None:
        try:
            outcome["value"] = fn(*args, **kwargs)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc
        finally:
            done.set()

    worker = threading.Thread(target=_run, name=f"hymn-{name}", daemon=True)
    worker.start()
    if not done.wait(timeout_seconds):
        raise UpstreamTimeout(f"{name} did not answer within {timeout_seconds}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


# ---------------------------------------------------------------------------
# Fallback music
# ---------------------------------------------------------------------------

FALLBACK_TRACK_SECONDS = 180.0

FALLBACK_TRACKS_BY_MOOD: dict[str, tuple[str, ...]] = {
    "ambient": (
        "spotify:track:3n3Ppam7vgaVa1iaRUc9Lp",
        "spotify:track:6DCZcSspjsKoFjzjrWoCdn",
        "spotify:track:2374M0fQpWi3dLnB54qaLX",
    ),
    "focus": (
        "spotify:track:0VjIjW4GlUZAMYd2vXMi3b",
        "spotify:track:5HCyWlXZPP0y6Gqq8TgA20",
        "spotify:track:3bidbhpOYeV4knp8AIu8Xn",
    ),
    "energetic": (
        "spotify:track:0DiWol3AO6WpXZgp0goxAV",
        "spotify:track:5ChkMS8OtdzJeqyybCc9R5",
        "spotify:track:1je1IMUz1HqjHB5cA8aEV",
    ),
    "upbeat": (
        "spotify:track:60nZcImufyMA1MKQY3dcCH",
        "spotify:track:2Fxmhks0bxGSBdJ92vM42m",
        "spotify:track:7qiZfU4dY1lWllzX7mPBI",
    ),
    "calm": (
        "spotify:track:2ULMHTMUUQrOxP0JsvRjFi",
        "spotify:track:1yxSLGMDHlW21z4YXirZDS",
        "spotify:track:6GyFP1nfCDB8lbD2bG0Hq9",
    ),
}


def fallback_tracks(mood: str) -> list[Track]:
    """Fixed small pool of known-good tracks for ``mood`` (focus when unknown)."""
    if mood == "silent":
        return []
    uris = FALLBACK_TRACKS_BY_MOOD.get(mood, FALLBACK_TRACKS_BY_MOOD["focus"])
    return [Track(uri=uri, duration_seconds=FALLBACK_TRACK_SECONDS) for uri in uris]


def rotate(items: Sequence[T], block_index: int, step: int = 3) -> list[T]:
    """Rotate ``items`` by ``block_index * step`` so adjacent blocks open differently."""
    if not items:
        return []
    offset = (block_index * step) % len(items)
    return [*items[offset:], *items[:offset]]


class StaticTrackSource:
    """Track source over a fixed list (tests, demo wiring)."""

    def __init__(self, tracks: Sequence[Track]) -> None:
        self._tracks = list(tracks)

    def tracks_for(self, strategy: BlockStrategy, count: int) -> list[Track]:
        return list(self._tracks)


class CatalogTrackSource:
    """Track source backed by a :class:`MusicCatalog`, degrading to the fallback pool.

    Catalog failures, timeouts and empty answers all fall back to
    :func:`fallback_tracks` for the strategy's mood. The list is rotated by
    ``block_index`` for variety between consecutive blocks.
    """

    def __init__(
        self,
        catalog: MusicCatalog | None,
        *,
        taste_profile: TasteProfile | None = None,
        exploration_level: str = "balanced",
        block_index: int = 0,
        timeout_seconds: float | None = None,
    ) -> None:
        self._catalog = catalog
        self._taste_profile = taste_profile
        self._exploration_level = exploration_level
        self._block_index = block_index
        self._timeout_s = timeout_seconds

    def tracks_for(self, strategy: BlockStrategy, count: int) -> list[Track]:
        mood = strategy.music_style
        if mood == "silent":
            return []

        tracks: list[Track] = []
        if self._catalog is not None:
            try:
                tracks = list(call_with_timeout(
                    self._catalog.recommend,
                    self._timeout_s,
                    self._taste_profile,
                    mood,
                    self._exploration_level,
                    count,
                    name="music-catalog",
                ))
            except UpstreamError as exc:
                logger.warning("Music catalog unavailable (%s): %s", exc.error_code, exc)
            except Exception:
                logger.warning("Music catalog failed for mood=%s", mood, exc_info=True)

        tracks = [t for t in tracks if t.duration_seconds > 0 and t.uri]
        if not tracks:
            logger.info("No catalog tracks for mood=%s; using fallback pool", mood)
            tracks = fallback_tracks(mood)
        return rotate(tracks, self._block_index)
