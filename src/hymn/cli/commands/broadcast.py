"""
Broadcast operator commands.

Generate, inspect, regenerate and clear the shared broadcast session. Every
command takes ``--at`` to act at a fixed instant instead of now, and ``--json``
for machine-readable output.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, NoReturn

import typer

from ...infra.exceptions import HymnError
from ...infra.logging import get_logger
from ...runtime.playback_locator import upcoming as upcoming_segments
from ...runtime.segment_types import AudioBlock, BroadcastSession, Segment, parse_timestamp
from ..wiring import Wiring, build_wiring

logger = get_logger(__name__)

DbOption = typer.Option(None, "--db", help="Database URL (defaults to DATABASE_URL)")
CalendarOption = typer.Option(None, "--calendar", help="Path to a JSON calendar file")
AtOption = typer.Option(None, "--at", help="ISO-8601 instant to act at (default: now)")
JsonOption = typer.Option(False, "--json", help="Output in JSON format")
OfflineOption = typer.Option(False, "--offline", help="Never call HTTP collaborators")


def _parse_at(at: str | None) -> datetime | None:
    if at is None:
        return None
    try:
        return parse_timestamp(at)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid --at timestamp {at!r}: {e}") from e


def _wire(db: str | None, calendar: str | None, at: str | None, offline: bool) -> tuple[Wiring, datetime | None]:
    at_time = _parse_at(at)
    return build_wiring(database_url=db, calendar_file=calendar, at_time=at_time, offline=offline), at_time


def _fail(error: HymnError, json_output: bool) -> NoReturn:
    code = getattr(error, "error_code", type(error).__name__)
    if json_output:
        typer.echo(json.dumps({"status": "error", "code": code, "message": str(error)}, indent=2))
    else:
        typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(1)


def _segment_line(block: AudioBlock, seg: Segment) -> str:
    start = block.start_time.timestamp() + seg.timing
    clock = datetime.fromtimestamp(start, tz=block.start_time.tzinfo).strftime("%H:%M:%S")
    if seg.kind == "voice":
        return f"  {clock}  voice  {seg.duration:6.0f}s  {seg.content}"
    label = seg.track_name or seg.track_uri
    return f"  {clock}  music  {seg.duration:6.0f}s  {label}"


def _session_summary(session: BroadcastSession) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "startTime": session.start_time.isoformat(),
        "createdAt": session.created_at.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
        "blocks": [
            {
                "id": b.id,
                "startTime": b.start_time.isoformat(),
                "endTime": b.end_time.isoformat(),
                "musicStyle": b.strategy.music_style,
                "voiceSegments": len(b.voice_segments),
                "musicSegments": len(b.music_segments),
            }
            for b in session.blocks
        ],
    }


def _echo_session(session: BroadcastSession, json_output: bool) -> None:
    summary = _session_summary(session)
    if json_output:
        typer.echo(json.dumps({"status": "ok", "session": summary}, indent=2))
        return
    typer.echo(f"Session {session.id}")
    typer.echo(f"  Expires: {summary['expiresAt']}")
    typer.echo(f"  Blocks: {len(session.blocks)}")
    for b in summary["blocks"]:
        typer.echo(
            f"  {b['startTime']} - {b['endTime']}  {b['musicStyle']:<9}  "
            f"voice={b['voiceSegments']} music={b['musicSegments']}"
        )


def schedule(
    db: str | None = DbOption,
    calendar: str | None = CalendarOption,
    at: str | None = AtOption,
    offline: bool = OfflineOption,
    json_output: bool = JsonOption,
):
    """Generate (or reuse) the broadcast session and list its blocks."""
    try:
        wiring, at_time = _wire(db, calendar, at, offline)
        session = wiring.director.ensure_session(at_time)
        wiring.director.render_voices(at_time)
    except HymnError as e:
        _fail(e, json_output)
    _echo_session(session, json_output)


def now(
    db: str | None = DbOption,
    calendar: str | None = CalendarOption,
    at: str | None = AtOption,
    offline: bool = OfflineOption,
    json_output: bool = JsonOption,
):
    """Show what is live: block, segment and offset into it."""
    try:
        wiring, at_time = _wire(db, calendar, at, offline)
        playing = wiring.director.tune_in(at_time)
    except HymnError as e:
        _fail(e, json_output)

    if json_output:
        typer.echo(json.dumps({"status": "ok", "nowPlaying": playing.to_dict()}, indent=2))
        return

    typer.echo(f"Session {playing.session_id} at {playing.at_time.isoformat()}")
    if playing.block is None or playing.position is None:
        typer.echo("  Off air: no block covers this instant")
        return
    block = playing.block
    typer.echo(
        f"  Block {block.id}  {block.start_time.isoformat()} - {block.end_time.isoformat()}  "
        f"({block.strategy.music_style})"
    )
    position = playing.position
    if position.segment is None:
        typer.echo(f"  {position.status.value} at {position.total_elapsed:.1f}s into the block")
    else:
        typer.echo(
            f"  Live {position.segment_type}: {position.position_in_segment:.1f}s into segment "
            f"(block +{position.total_elapsed:.1f}s)"
        )
        typer.echo(_segment_line(block, position.segment))
    if playing.seconds_until_next_block is not None:
        typer.echo(f"  Next block in {playing.seconds_until_next_block:.0f}s")


def upcoming(
    db: str | None = DbOption,
    calendar: str | None = CalendarOption,
    at: str | None = AtOption,
    offline: bool = OfflineOption,
    limit: int = typer.Option(5, "--limit", "-n", min=1, help="Number of segments to list"),
    json_output: bool = JsonOption,
):
    """List the next segments of the live block, then of the following blocks."""
    try:
        wiring, at_time = _wire(db, calendar, at, offline)
        playing = wiring.director.tune_in(at_time)
        session = wiring.store.current()
    except HymnError as e:
        _fail(e, json_output)

    rows: list[tuple[AudioBlock, Segment]] = []
    if playing.block is not None:
        rows.extend((playing.block, seg) for seg in playing.up_next)
    if session is not None:
        for block in session.blocks:
            if len(rows) >= limit:
                break
            if block.start_time > playing.at_time:
                rows.extend((block, seg) for seg in upcoming_segments(block, -1.0))
    rows = rows[:limit]

    if json_output:
        payload = [
            {"blockId": b.id, "startsAt": datetime.fromtimestamp(
                b.start_time.timestamp() + s.timing, tz=b.start_time.tzinfo
            ).isoformat(), "segment": s.to_dict()}
            for b, s in rows
        ]
        typer.echo(json.dumps({"status": "ok", "upcoming": payload}, indent=2))
        return
    if not rows:
        typer.echo("Nothing scheduled after this instant")
        return
    for block, seg in rows:
        typer.echo(_segment_line(block, seg))


def regenerate(
    db: str | None = DbOption,
    calendar: str | None = CalendarOption,
    at: str | None = AtOption,
    offline: bool = OfflineOption,
    json_output: bool = JsonOption,
):
    """Rebuild the unlocked future of the session; started blocks are kept."""
    try:
        wiring, at_time = _wire(db, calendar, at, offline)
        session = wiring.director.regenerate(at_time)
    except HymnError as e:
        _fail(e, json_output)
    logger.info("session_regenerated", session_id=session.id, blocks=len(session.blocks))
    _echo_session(session, json_output)


def shuffle(
    db: str | None = DbOption,
    at: str | None = AtOption,
    json_output: bool = JsonOption,
):
    """Swap the next upcoming track of the live block."""
    try:
        wiring, at_time = _wire(db, None, at, True)
        block = wiring.director.shuffle_next_track(at_time=at_time)
    except HymnError as e:
        _fail(e, json_output)
    if block is None:
        if json_output:
            typer.echo(json.dumps({"status": "noop"}, indent=2))
        else:
            typer.echo("No upcoming track to shuffle in the live block")
        return
    if json_output:
        typer.echo(json.dumps({"status": "ok", "block": block.to_dict()}, indent=2))
    else:
        typer.echo(f"Shuffled next track of block {block.id}")


def evaluate(
    db: str | None = DbOption,
    calendar: str | None = CalendarOption,
    at: str | None = AtOption,
    offline: bool = OfflineOption,
    json_output: bool = JsonOption,
):
    """Run one regeneration-policy evaluation."""
    try:
        wiring, _ = _wire(db, calendar, at, offline)
        changed = wiring.director.evaluate_once()
    except HymnError as e:
        _fail(e, json_output)
    reason = wiring.director.last_reason if changed else None
    if json_output:
        typer.echo(json.dumps({"status": "ok", "regenerated": changed, "reason": reason}, indent=2))
    else:
        typer.echo(f"Regenerated ({reason})" if changed else "Session is current")


def clear(
    db: str | None = DbOption,
    json_output: bool = JsonOption,
):
    """Discard the stored session."""
    try:
        wiring, _ = _wire(db, None, None, True)
        wiring.store.clear()
    except HymnError as e:
        _fail(e, json_output)
    if json_output:
        typer.echo(json.dumps({"status": "ok"}, indent=2))
    else:
        typer.echo("Session cleared")
