"""
Session Store.

Persists the current :class:`BroadcastSession` under a fixed key plus the
cached voice audio that belongs to it. Readers call :meth:`SessionStore.get_or_create`
on every poll; while the stored session is valid they all get the same one,
which is how every viewer converges on one timeline.

Storage is a small key-value boundary (:class:`SessionBackend`). The expiry
lives inside the payload and is interpreted here and by the regeneration
policy, never by the backend.

Concurrency: get-or-create and the read-modify-write :meth:`SessionStore.update`
are serialized by a process-local lock, so within one process a session is
generated exactly once and no in-place edit is lost to a concurrent write.
Separate processes sharing a backend may race; the later write wins.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import sessionmaker

from hymn.domain.entities import BroadcastSessionRecord
from hymn.infra.exceptions import ValidationError
from hymn.infra.uow import session as uow_session
from hymn.runtime.clock import Clock, MasterClock
from hymn.runtime.segment_types import (
    AudioBlock,
    BroadcastSession,
    CalendarEvent,
    ensure_utc,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "hymn_broadcast_session"
DEFAULT_SESSION_HOURS = 12

BlockGenerator = Callable[[], Sequence[AudioBlock]]
SessionMutator = Callable[[BroadcastSession], BroadcastSession | None]


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

@runtime_checkable
class SessionBackend(Protocol):
    """Key-value persistence for session payloads."""

    def get(self, key: str) -> dict[str, Any] | None:
        ...

    def put(self, key: str, payload: dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemorySessionBackend:
    """Thread-safe dict backend (tests, single-process demos)."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            payload = self._data.get(key)
            return dict(payload) if payload is not None else None

    def put(self, key: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self._data[key] = dict(payload)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlSessionBackend:
    """Stores each payload as one row of ``broadcast_sessions``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    def get(self, key: str) -> dict[str, Any] | None:
        with uow_session(self._factory) as db:
            record = db.get(BroadcastSessionRecord, key)
            return dict(record.payload) if record is not None else None

    def put(self, key: str, payload: dict[str, Any]) -> None:
        created_at = parse_timestamp(payload["createdAt"])
        expires_at = parse_timestamp(payload["expiresAt"])
        with uow_session(self._factory) as db:
            record = db.get(BroadcastSessionRecord, key)
            if record is None:
                record = BroadcastSessionRecord(session_key=key)
                db.add(record)
            record.session_id = str(payload["id"])
            record.payload = payload
            record.created_at = created_at
            record.expires_at = expires_at

    def delete(self, key: str) -> None:
        with uow_session(self._factory) as db:
            record = db.get(BroadcastSessionRecord, key)
            if record is not None:
                db.delete(record)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SessionStore:
    """The only read/write path to the shared broadcast session."""

    def __init__(
        self,
        backend: SessionBackend | None = None,
        *,
        key: str = DEFAULT_SESSION_KEY,
        session_hours: float = DEFAULT_SESSION_HOURS,
        clock: Clock | None = None,
    ) -> None:
        if session_hours <= 0:
            raise ValueError("session_hours must be positive")
        self._backend = backend if backend is not None else InMemorySessionBackend()
        self._key = key
        self._ttl = timedelta(hours=session_hours)
        self._clock = clock or MasterClock()
        self._lock = threading.RLock()

    @property
    def key(self) -> str:
        return self._key

    def current(self) -> BroadcastSession | None:
        """The stored session, valid or not. Unreadable payloads count as absent."""
        payload = self._backend.get(self._key)
        if payload is None:
            return None
        try:
            return BroadcastSession.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            logger.warning("Stored session under %r is unreadable; ignoring it", self._key, exc_info=True)
            return None

    def get_or_create(
        self,
        generator: BlockGenerator,
        at_time: datetime | None = None,
        *,
        calendar_event_ids: Sequence[str] = (),
        calendar_events: Sequence[CalendarEvent] = (),
    ) -> BroadcastSession:
        """Return the stored session while ``at_time < expires_at``, else build one."""
        at_time = self._at(at_time)
        with self._lock:
            existing = self.current()
            if existing is not None and existing.is_valid(at_time):
                logger.debug("Reusing session %s (expires %s)", existing.id, existing.expires_at.isoformat())
                return existing
            if existing is not None:
                logger.info("Session %s expired at %s; generating a new one", existing.id, existing.expires_at.isoformat())
            return self._create(generator, at_time, calendar_event_ids, calendar_events, carry_audio=None)

    def force_regenerate(
        self,
        generator: BlockGenerator,
        at_time: datetime | None = None,
        *,
        calendar_event_ids: Sequence[str] = (),
        calendar_events: Sequence[CalendarEvent] = (),
    ) -> BroadcastSession:
        """Discard the stored session and persist a freshly generated one.

        Cached voice audio is carried over for voice segments that survive
        into the new run.
        """
        at_time = self._at(at_time)
        with self._lock:
            previous = self.current()
            carry = previous.voice_audio if previous is not None else None
            return self._create(generator, at_time, calendar_event_ids, calendar_events, carry_audio=carry)

    def update(self, mutate: SessionMutator) -> BroadcastSession | None:
        """Read-modify-write the current session under the store lock.

        ``mutate`` gets the stored session and returns the session to persist,
        or None to leave the store untouched. Returns what was persisted.
        """
        with self._lock:
            session = self.current()
            if session is None:
                return None
            updated = mutate(session)
            if updated is None:
                return None
            self._backend.put(self._key, updated.to_dict())
            return updated

    def cache_voice_audio(self, voice_id: str, audio_ref: str) -> bool:
        """Attach rendered audio to the current session. False when there is none."""
        return self.cache_voice_audio_many({voice_id: audio_ref}) > 0

    def cache_voice_audio_many(self, audio_refs: Mapping[str, str]) -> int:
        """Attach several rendered clips in one write. Returns how many were stored."""
        if not audio_refs:
            return 0

        def attach(session: BroadcastSession) -> BroadcastSession:
            session.voice_audio.update(audio_refs)
            return session

        if self.update(attach) is None:
            logger.warning("No session to cache %d voice clip(s) into", len(audio_refs))
            return 0
        return len(audio_refs)

    def get_voice_audio(self, voice_id: str) -> str | None:
        session = self.current()
        if session is None:
            return None
        return session.voice_audio.get(voice_id)

    def clear(self) -> None:
        with self._lock:
            self._backend.delete(self._key)
        logger.info("Cleared session %r", self._key)

    def _create(
        self,
        generator: BlockGenerator,
        at_time: datetime,
        calendar_event_ids: Sequence[str],
        calendar_events: Sequence[CalendarEvent],
        carry_audio: dict[str, str] | None,
    ) -> BroadcastSession:
        blocks = list(generator())
        if not blocks:
            raise ValidationError("Session generator returned no blocks")

        voice_audio: dict[str, str] = {}
        if carry_audio:
            live_ids = {v.id for b in blocks for v in b.voice_segments}
            voice_audio = {vid: ref for vid, ref in carry_audio.items() if vid in live_ids}

        session = BroadcastSession(
            id=f"session-{uuid.uuid4().hex}",
            start_time=blocks[0].start_time,
            blocks=blocks,
            created_at=at_time,
            expires_at=at_time + self._ttl,
            voice_audio=voice_audio,
            calendar_event_ids=tuple(calendar_event_ids) or tuple(sorted(e.id for e in calendar_events)),
            calendar_event_windows={e.id: (e.start, e.end) for e in calendar_events},
        )
        self._backend.put(self._key, session.to_dict())
        logger.info(
            "Created session %s: %d block(s) from %s, expires %s",
            session.id, len(blocks), session.start_time.isoformat(), session.expires_at.isoformat(),
        )
        return session

    def _at(self, at_time: datetime | None) -> datetime:
        return ensure_utc(at_time) if at_time is not None else self._clock.now_utc()
