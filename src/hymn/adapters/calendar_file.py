"""
File-backed calendar collaborator.

Reads events from a JSON file holding a list of objects::

    [{"id": "e1", "summary": "Team sync", "start": "2024-03-01T10:00:00Z",
      "end": "2024-03-01T10:30:00Z", "attendees": ["a@example.com"]}]

The file is re-read on every call so edits show up on the next evaluation.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

from ..infra.exceptions import MalformedResponse, UpstreamError
from ..runtime.clock import Clock, MasterClock
from ..runtime.segment_types import CalendarEvent, parse_timestamp


def event_from_dict(data: dict[str, Any]) -> CalendarEvent:
    return CalendarEvent(
        id=str(data["id"]),
        summary=str(data.get("summary", "")),
        start=parse_timestamp(data["start"]),
        end=parse_timestamp(data["end"]),
        description=str(data.get("description", "") or ""),
        location=data.get("location"),
        attendees=tuple(str(a) for a in data.get("attendees") or ()),
    )


def load_events(path: Path) -> list[CalendarEvent]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise UpstreamError(f"Cannot read calendar file {path}: {e}") from e
    except ValueError as e:
        raise MalformedResponse(f"Calendar file {path} is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise MalformedResponse(f"Calendar file {path} must hold a JSON array")
    try:
        return [event_from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponse(f"Calendar file {path} has an invalid event: {e}") from e


class FileCalendarSource:
    """:class:`CalendarSource` over a JSON file."""

    def __init__(self, path: str | Path, clock: Clock | None = None):
        self.path = Path(path)
        self._clock = clock or MasterClock()

    def get_upcoming_events(self, hours_ahead: float) -> list[CalendarEvent]:
        now = self._clock.now_utc()
        horizon = now + timedelta(hours=hours_ahead)
        events = [e for e in load_events(self.path) if e.overlaps(now, horizon)]
        return sorted(events, key=lambda e: e.start)
