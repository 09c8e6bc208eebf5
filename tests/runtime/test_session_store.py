"""Tests for the session store.

Verifies:
- get_or_create returns the stored session while it is valid and builds a
  new one at or after expiry
- force_regenerate replaces the session and carries voice audio over for
  surviving voice segments only
- The SQL backend round-trips sessions through SQLite
- Unreadable payloads are treated as absent
- update() is an atomic read-modify-write; voice clips are cached in one write
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from hymn.infra.db import get_engine, init_db, make_session_factory
from hymn.infra.exceptions import ValidationError
from hymn.runtime.clock import ControllableMasterClock
from hymn.runtime.segment_types import (
    AudioBlock,
    BlockStrategy,
    CalendarEvent,
    MusicSegment,
    VoiceSegment,
)
from hymn.runtime.session_store import (
    InMemorySessionBackend,
    SessionBackend,
    SessionStore,
    SqlSessionBackend,
)

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _make_block(start: datetime, voice_id: str = "voice-1") -> AudioBlock:
    return AudioBlock(
        id=f"block-{int(start.timestamp() * 1000)}",
        start_time=start,
        end_time=start + timedelta(minutes=30),
        strategy=BlockStrategy("focus", 0.5, "minimal", "low"),
        voice_segments=(VoiceSegment(id=voice_id, timing=0.0, content="Hello!", duration=5.0),),
        music_segments=(MusicSegment(timing=5.0, duration=1795.0, track_uri="spotify:track:a"),),
        generated_at=start,
    )


class CountingGenerator:
    """Block generator that counts how often it ran."""

    def __init__(self, voice_id: str = "voice-1", start: datetime = T0):
        self.voice_id = voice_id
        self.start = start
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return [_make_block(self.start, self.voice_id), _make_block(self.start + timedelta(minutes=30), "voice-2")]


class CountingBackend(InMemorySessionBackend):
    """In-memory backend that counts writes."""

    def __init__(self) -> None:
        super().__init__()
        self.puts = 0

    def put(self, key, payload) -> None:
        self.puts += 1
        super().put(key, payload)


def _make_store(backend=None, at: datetime = T0, hours: float = 12) -> tuple[SessionStore, ControllableMasterClock]:
    clock = ControllableMasterClock(at)
    return SessionStore(backend, key="test-session", session_hours=hours, clock=clock), clock


class TestGetOrCreate:
    def test_first_call_generates_and_persists(self):
        store, _ = _make_store()
        generator = CountingGenerator()

        session = store.get_or_create(generator)

        assert generator.calls == 1
        assert session.id.startswith("session-")
        assert session.start_time == T0
        assert session.created_at == T0
        assert session.expires_at == T0 + timedelta(hours=12)
        assert store.current().id == session.id

    def test_valid_session_is_reused(self):
        store, clock = _make_store()
        generator = CountingGenerator()

        first = store.get_or_create(generator)
        clock.advance(3600)
        second = store.get_or_create(generator)

        assert generator.calls == 1
        assert second.id == first.id

    def test_one_second_before_expiry_is_still_valid(self):
        store, _ = _make_store()
        generator = CountingGenerator()
        first = store.get_or_create(generator)

        again = store.get_or_create(generator, first.expires_at - timedelta(seconds=1))

        assert again.id == first.id
        assert generator.calls == 1

    def test_expiry_is_inclusive(self):
        store, _ = _make_store()
        generator = CountingGenerator()
        first = store.get_or_create(generator)

        fresh = store.get_or_create(generator, first.expires_at)

        assert fresh.id != first.id
        assert generator.calls == 2
        assert fresh.created_at == first.expires_at

    def test_calendar_event_ids_are_recorded(self):
        store, _ = _make_store()
        session = store.get_or_create(CountingGenerator(), calendar_event_ids=["e1", "e2"])
        assert store.current().calendar_event_ids == ("e1", "e2")
        assert session.calendar_event_ids == ("e1", "e2")

    def test_calendar_event_windows_are_recorded(self):
        store, _ = _make_store()
        events = [
            CalendarEvent(id="e2", summary="Review", start=T0 + timedelta(hours=2), end=T0 + timedelta(hours=3)),
            CalendarEvent(id="e1", summary="Standup", start=T0, end=T0 + timedelta(minutes=15)),
        ]

        store.get_or_create(CountingGenerator(), calendar_events=events)

        stored = store.current()
        assert stored.calendar_event_ids == ("e1", "e2")
        assert stored.calendar_event_windows["e1"] == (T0, T0 + timedelta(minutes=15))

    def test_empty_generator_is_rejected(self):
        store, _ = _make_store()
        with pytest.raises(ValidationError):
            store.get_or_create(lambda: [])
        assert store.current() is None

    def test_corrupt_payload_counts_as_absent(self):
        backend = InMemorySessionBackend()
        backend.put("test-session", {"id": "broken"})
        store, _ = _make_store(backend)

        assert store.current() is None
        session = store.get_or_create(CountingGenerator())
        assert session.id != "broken"

    def test_session_hours_must_be_positive(self):
        with pytest.raises(ValueError):
            SessionStore(session_hours=0)


class TestForceRegenerate:
    def test_replaces_session_even_when_valid(self):
        store, _ = _make_store()
        first = store.get_or_create(CountingGenerator())

        second = store.force_regenerate(CountingGenerator())

        assert second.id != first.id
        assert store.current().id == second.id

    def test_voice_audio_follows_surviving_segments(self):
        store, _ = _make_store()
        store.get_or_create(CountingGenerator("voice-1"))
        store.cache_voice_audio("voice-1", "data:audio/mpeg;base64,AAA=")
        store.cache_voice_audio("voice-2", "data:audio/mpeg;base64,BBB=")

        # voice-1 is replaced, voice-2 survives
        session = store.force_regenerate(CountingGenerator("voice-9"))

        assert session.voice_audio == {"voice-2": "data:audio/mpeg;base64,BBB="}
        assert store.get_voice_audio("voice-1") is None


class TestVoiceAudio:
    def test_cache_and_read(self):
        store, _ = _make_store()
        store.get_or_create(CountingGenerator())

        assert store.cache_voice_audio("voice-1", "ref-1") is True
        assert store.get_voice_audio("voice-1") == "ref-1"
        assert store.current().voice_audio == {"voice-1": "ref-1"}

    def test_cache_without_session(self):
        store, _ = _make_store()
        assert store.cache_voice_audio("voice-1", "ref-1") is False
        assert store.get_voice_audio("voice-1") is None

    def test_cache_many_is_one_write(self):
        backend = CountingBackend()
        store, _ = _make_store(backend)
        store.get_or_create(CountingGenerator())
        backend.puts = 0

        assert store.cache_voice_audio_many({"voice-1": "ref-1", "voice-2": "ref-2"}) == 2

        assert backend.puts == 1
        assert store.current().voice_audio == {"voice-1": "ref-1", "voice-2": "ref-2"}

    def test_cache_many_without_session(self):
        store, _ = _make_store()
        assert store.cache_voice_audio_many({"voice-1": "ref-1"}) == 0


class TestUpdate:
    def test_mutation_is_persisted(self):
        store, _ = _make_store()
        store.get_or_create(CountingGenerator())

        def drop_last_block(session):
            session.blocks = session.blocks[:1]
            return session

        updated = store.update(drop_last_block)

        assert len(updated.blocks) == 1
        assert len(store.current().blocks) == 1

    def test_none_leaves_store_untouched(self):
        backend = CountingBackend()
        store, _ = _make_store(backend)
        store.get_or_create(CountingGenerator())
        backend.puts = 0

        assert store.update(lambda session: None) is None
        assert backend.puts == 0

    def test_without_session(self):
        store, _ = _make_store()
        assert store.update(lambda session: session) is None

    def test_concurrent_regeneration_waits_for_update(self):
        store, _ = _make_store()
        store.get_or_create(CountingGenerator())
        regenerated = threading.Event()

        def regenerate():
            store.force_regenerate(CountingGenerator("voice-9"))
            regenerated.set()

        def mutate(session):
            worker = threading.Thread(target=regenerate)
            worker.start()
            # The store lock is held; the regeneration cannot land mid-update
            assert not regenerated.wait(timeout=0.2)
            session.voice_audio["voice-2"] = "ref-2"
            return session

        store.update(mutate)
        assert regenerated.wait(timeout=5.0)

        # The regeneration ran after the update and carried the surviving clip
        assert store.current().voice_audio == {"voice-2": "ref-2"}
        assert store.current().blocks[0].voice_segments[0].id == "voice-9"


class TestClear:
    def test_clear_removes_session(self):
        store, _ = _make_store()
        store.get_or_create(CountingGenerator())
        store.clear()
        assert store.current() is None

    def test_clear_without_session_is_harmless(self):
        store, _ = _make_store()
        store.clear()
        assert store.current() is None


class TestSqlBackend:
    @pytest.fixture
    def backend(self):
        engine = get_engine("sqlite://")
        init_db(engine)
        return SqlSessionBackend(make_session_factory(engine))

    def test_is_a_session_backend(self, backend):
        assert isinstance(backend, SessionBackend)

    def test_round_trip(self, backend):
        store, _ = _make_store(backend)
        created = store.get_or_create(CountingGenerator())

        loaded = store.current()

        assert loaded.id == created.id
        assert loaded.blocks == created.blocks
        assert loaded.expires_at == created.expires_at

    def test_second_store_sees_same_session(self, backend):
        store_a, _ = _make_store(backend)
        store_b, _ = _make_store(backend)
        generator = CountingGenerator()

        first = store_a.get_or_create(generator)
        second = store_b.get_or_create(generator)

        assert first.id == second.id
        assert generator.calls == 1

    def test_update_and_delete(self, backend):
        store, _ = _make_store(backend)
        store.get_or_create(CountingGenerator())
        store.cache_voice_audio("voice-2", "ref-2")

        assert store.get_voice_audio("voice-2") == "ref-2"
        store.clear()
        assert backend.get("test-session") is None
