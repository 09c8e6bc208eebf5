"""
Builds a :class:`BroadcastDirector` from settings for the CLI.

Without an API key (or with ``offline``) no HTTP collaborators are created
and every block comes from the rule-based fallback. Headlines need their own
key (``NEWS_API_KEY``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ..adapters.calendar_file import FileCalendarSource
from ..adapters.news_http import NewsApiSource
from ..adapters.openai_http import (
    OpenAIContentGenerator,
    OpenAIHttpClient,
    OpenAISpeechSynthesizer,
)
from ..infra.db import get_engine, init_db, make_session_factory
from ..infra.settings import Settings, settings as default_settings
from ..runtime.broadcast_director import BroadcastDirector
from ..runtime.broadcast_scheduler import BroadcastScheduler, ScheduleContext
from ..runtime.clock import Clock, ControllableMasterClock, MasterClock
from ..runtime.regeneration_policy import RegenerationPolicy
from ..runtime.segment_types import UserPreferences
from ..runtime.session_store import SessionStore, SqlSessionBackend
from ..runtime.strategy_resolver import StrategyResolver
from ..runtime.voice_renderer import VoiceRenderer


@dataclass
class Wiring:
    director: BroadcastDirector
    store: SessionStore
    clock: Clock


def build_wiring(
    *,
    database_url: str | None = None,
    calendar_file: str | None = None,
    at_time: datetime | None = None,
    offline: bool = False,
    cfg: Settings | None = None,
) -> Wiring:
    cfg = cfg or default_settings
    clock: Clock = ControllableMasterClock(at_time) if at_time is not None else MasterClock()

    engine = get_engine(database_url or cfg.database_url)
    init_db(engine)
    store = SessionStore(
        SqlSessionBackend(make_session_factory(engine)),
        key=cfg.session_key,
        session_hours=cfg.session_hours,
        clock=clock,
    )

    generator = None
    renderer = None
    if cfg.openai_api_key and not offline:
        client = OpenAIHttpClient(
            cfg.openai_api_key, cfg.openai_base_url, timeout=cfg.collaborator_timeout_seconds
        )
        generator = OpenAIContentGenerator(client, model=cfg.content_model)
        renderer = VoiceRenderer(
            OpenAISpeechSynthesizer(client, model=cfg.speech_model),
            store,
            timeout_seconds=cfg.collaborator_timeout_seconds,
        )

    scheduler = BroadcastScheduler(
        StrategyResolver(generator, timeout_seconds=cfg.collaborator_timeout_seconds),
        timeout_seconds=cfg.collaborator_timeout_seconds,
        fail_loudly=cfg.invariants_fail_loudly,
    )
    policy = RegenerationPolicy(
        stale_after=timedelta(minutes=cfg.stale_block_minutes) if cfg.stale_block_minutes else None,
        calendar_check=cfg.calendar_check,
    )
    news = None
    if cfg.news_api_key and not offline:
        news = NewsApiSource(cfg.news_api_key, cfg.news_base_url, timeout=cfg.collaborator_timeout_seconds)
    context = ScheduleContext(
        preferences=UserPreferences(voice_persona=cfg.voice_persona),
        timezone=ZoneInfo(cfg.timezone),
    )
    director = BroadcastDirector(
        store,
        scheduler,
        policy=policy,
        clock=clock,
        context=context,
        calendar=FileCalendarSource(calendar_file, clock=clock) if calendar_file else None,
        news=news,
        window_hours=cfg.window_hours,
        block_minutes=cfg.block_duration_minutes,
        timeout_seconds=cfg.collaborator_timeout_seconds,
        voice_renderer=renderer,
        voice_persona=cfg.voice_persona,
    )
    return Wiring(director=director, store=store, clock=clock)
