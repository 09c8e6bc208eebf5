"""Tests for the collaborator timeout boundary and the music fallback pool."""

from __future__ import annotations

import time

import pytest

from hymn.infra.exceptions import UpstreamError, UpstreamTimeout
from hymn.runtime.collaborators import (
    FALLBACK_TRACKS_BY_MOOD,
    CatalogTrackSource,
    StaticTrackSource,
    call_with_timeout,
    fallback_tracks,
    rotate,
)
from hymn.runtime.segment_types import BlockStrategy, Track

FOCUS = BlockStrategy("focus", 0.5, "minimal", "low")


class MockCatalog:
    def __init__(self, tracks=(), error: Exception | None = None, delay: float = 0.0):
        self.tracks = list(tracks)
        self.error = error
        self.delay = delay
        self.calls = []

    def recommend(self, taste_profile, mood, exploration_level, count):
        self.calls.append((mood, exploration_level, count))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.tracks)


class TestCallWithTimeout:
    def test_inline_without_timeout(self):
        assert call_with_timeout(lambda a, b=0: a + b, None, 2, b=3) == 5

    def test_threaded_result(self):
        assert call_with_timeout(lambda: "ok", 1.0) == "ok"

    def test_errors_propagate(self):
        def boom():
            raise UpstreamError("nope")

        with pytest.raises(UpstreamError, match="nope"):
            call_with_timeout(boom, 1.0)

    def test_timeout(self):
        with pytest.raises(UpstreamTimeout):
            call_with_timeout(time.sleep, 0.05, 0.5, name="sleeper")


class TestFallbackPool:
    def test_known_moods(self):
        for mood, uris in FALLBACK_TRACKS_BY_MOOD.items():
            tracks = fallback_tracks(mood)
            assert [t.uri for t in tracks] == list(uris)
            assert all(t.duration_seconds > 0 for t in tracks)

    def test_unknown_mood_uses_focus(self):
        assert [t.uri for t in fallback_tracks("polka")] == list(FALLBACK_TRACKS_BY_MOOD["focus"])

    def test_silent_has_no_tracks(self):
        assert fallback_tracks("silent") == []

    def test_rotate(self):
        assert rotate([1, 2, 3, 4], 0) == [1, 2, 3, 4]
        assert rotate([1, 2, 3, 4], 1) == [4, 1, 2, 3]
        assert rotate([], 5) == []


class TestCatalogTrackSource:
    def test_catalog_tracks_are_used(self):
        tracks = [Track("spotify:track:a", 200.0), Track("spotify:track:b", 210.0)]
        catalog = MockCatalog(tracks)
        source = CatalogTrackSource(catalog, exploration_level="adventurous")

        assert source.tracks_for(FOCUS, 10) == tracks
        assert catalog.calls == [("focus", "adventurous", 10)]

    def test_catalog_error_falls_back(self):
        source = CatalogTrackSource(MockCatalog(error=UpstreamError("down")))
        assert [t.uri for t in source.tracks_for(FOCUS, 5)] == list(FALLBACK_TRACKS_BY_MOOD["focus"])

    def test_catalog_bug_falls_back(self):
        source = CatalogTrackSource(MockCatalog(error=KeyError("tracks")))
        assert len(source.tracks_for(FOCUS, 5)) == 3

    def test_catalog_timeout_falls_back(self):
        source = CatalogTrackSource(MockCatalog([Track("spotify:track:a", 200.0)], delay=0.5), timeout_seconds=0.05)
        assert [t.uri for t in source.tracks_for(FOCUS, 5)] == list(FALLBACK_TRACKS_BY_MOOD["focus"])

    def test_unusable_tracks_are_dropped(self):
        source = CatalogTrackSource(MockCatalog([Track("spotify:track:a", 0.0), Track("", 100.0)]))
        assert [t.uri for t in source.tracks_for(FOCUS, 5)] == list(FALLBACK_TRACKS_BY_MOOD["focus"])

    def test_no_catalog(self):
        assert len(CatalogTrackSource(None).tracks_for(FOCUS, 5)) == 3

    def test_silent_never_asks_the_catalog(self):
        catalog = MockCatalog([Track("spotify:track:a", 200.0)])
        silent = BlockStrategy("silent", 0.0, "none", "none")
        assert CatalogTrackSource(catalog).tracks_for(silent, 5) == []
        assert catalog.calls == []

    def test_block_index_rotates(self):
        pool = fallback_tracks("focus")
        rotated = CatalogTrackSource(None, block_index=1).tracks_for(FOCUS, 5)
        assert rotated == rotate(pool, 1)


def test_static_track_source():
    tracks = [Track("spotify:track:a", 100.0)]
    assert StaticTrackSource(tracks).tracks_for(FOCUS, 9) == tracks
