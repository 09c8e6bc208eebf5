"""Master clock abstractions used for broadcast timing.

Core functions take ``at_time`` explicitly; the clock is only sampled at the
outer edge (director, CLI) and handed inward.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol, runtime_checkable

@runtime_checkable
class Clock(Protocol):
    """Protocol implemented by clock providers."""

    def now_utc(self) -> datetime:
        """Return current UTC time as an aware datetime."""
        ...

class MasterClock:
    """Wall clock providing timezone-aware timestamps."""

    def now_utc(self) -> datetime:
        """Return current UTC time as an aware datetime."""
        return datetime.now(timezone.utc)

    @staticmethod
    def _ensure_aware(dt: datetime) -> None:
        if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
            raise ValueError("Datetime must be timezone-aware")

class ControllableMasterClock(MasterClock):
    """Deterministic clock for tests and for replaying a fixed instant.

    Time advances only when :meth:`advance` or :meth:`set` is called.
    """

    def __init__(self, epoch: datetime) -> None:
        self._ensure_aware(epoch)
        self._current = epoch.astimezone(timezone.utc)
        self._lock = Lock()

    def now_utc(self) -> datetime:
        with self._lock:
            return self._current

    def advance(self, seconds: float) -> datetime:
        """Advance the clock by ``seconds`` (must be non-negative)."""
        if seconds < 0.0:
            raise ValueError("seconds must be non-negative")
        with self._lock:
            self._current += timedelta(seconds=seconds)
            return self._current

    def set(self, when: datetime) -> None:
        self._ensure_aware(when)
        with self._lock:
            self._current = when.astimezone(timezone.utc)
