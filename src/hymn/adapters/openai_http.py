"""
OpenAI-compatible HTTP collaborators.

Content generation (chat completions in JSON mode) and speech synthesis
(audio/speech) over plain HTTP. Transport errors, HTTP errors and unreadable
answers are all raised as :class:`UpstreamError` subclasses; the runtime
absorbs them at its own boundary.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..infra.exceptions import MalformedResponse, UpstreamError, UpstreamTimeout
from ..infra.logging import get_logger
from ..runtime.segment_types import CalendarEvent, NewsItem, TasteProfile, UserPreferences
from ..runtime.strategy_resolver import clock_time, day_part

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are an AI radio DJ planning the next block of a personal broadcast. Return only valid JSON."

RESPONSE_SHAPE = (
    '{"strategy": {"musicStyle": "ambient|focus|energetic|upbeat|calm|silent", '
    '"musicVolume": 0-1, "voiceFrequency": "none|minimal|moderate|active", '
    '"interruptionLevel": "none|low|medium|high", "reasoning": "..."}, '
    '"musicDescription": "...", '
    '"voiceSegments": [{"timing": seconds_from_block_start, "content": "...", '
    '"priority": "low|medium|high", "duration": estimated_seconds}]}'
)


def _create_session(api_key: str) -> requests.Session:
    """Create a requests session with retry logic and auth headers."""
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["POST"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({"Authorization": f"Bearer {api_key}"})
    return session


def build_prompt(
    events: Sequence[CalendarEvent],
    news: Sequence[NewsItem],
    preferences: UserPreferences,
    at_time: datetime,
    taste_profile: TasteProfile | None,
) -> str:
    """Plain-text context for one block."""
    lines = [f"Time: {at_time.isoformat()} ({day_part(at_time.hour)})"]
    if events:
        lines.append("Calendar:")
        lines.extend(
            f"- {clock_time(e.start, at_time)}-{clock_time(e.end, at_time)} {e.summary}"
            + (f" ({len(e.attendees)} attendees)" if e.attendees else "")
            for e in events
        )
    else:
        lines.append("Calendar: no events scheduled")
    if news:
        lines.append("Headlines:")
        lines.extend(f"- {n.title}" for n in news[:3])
    lines.append(
        f"Preferences: moods={', '.join(preferences.music_moods)}; "
        f"interruptions={preferences.interruption_level}; exploration={preferences.exploration_level}"
    )
    if taste_profile is not None and (taste_profile.top_artists or taste_profile.top_genres):
        lines.append(
            f"Taste: artists={', '.join(taste_profile.top_artists[:3])}; "
            f"genres={', '.join(taste_profile.top_genres[:5])}"
        )
    lines.append(f"Answer with JSON shaped like: {RESPONSE_SHAPE}")
    return "\n".join(lines)


class OpenAIHttpClient:
    """Thin POST helper shared by the content and speech collaborators."""

    def __init__(self, api_key: str, base_url: str = "https://api.openai.com/v1", timeout: float = 20.0):
        if not api_key.strip():
            raise ValueError("api_key cannot be empty")
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout
        self.session = _create_session(api_key.strip())

    def post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response
        except requests.Timeout as e:
            raise UpstreamTimeout(f"POST {path} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamError(f"POST {path} failed: {e}") from e


class OpenAIContentGenerator:
    """:class:`ContentGenerator` backed by chat completions in JSON mode."""

    def __init__(self, client: OpenAIHttpClient, model: str = "gpt-4o", temperature: float = 0.7):
        self._client = client
        self._model = model
        self._temperature = temperature

    def generate(
        self,
        events: Sequence[CalendarEvent],
        news: Sequence[NewsItem],
        preferences: UserPreferences,
        at_time: datetime,
        taste_profile: TasteProfile | None = None,
    ) -> Mapping[str, Any]:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(events, news, preferences, at_time, taste_profile)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self._temperature,
        }
        response = self._client.post("chat/completions", payload)
        try:
            content = response.json()["choices"][0]["message"]["content"]
            result = json.loads(content)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"Unreadable chat completion: {e}") from e
        if not isinstance(result, dict):
            raise MalformedResponse("Chat completion content is not a JSON object")
        logger.debug("content_generated", model=self._model, at=at_time.isoformat())
        return result


class OpenAISpeechSynthesizer:
    """:class:`SpeechSynthesizer` backed by the audio/speech endpoint (MP3 bytes)."""

    def __init__(self, client: OpenAIHttpClient, model: str = "tts-1-hd", speed: float = 1.05):
        self._client = client
        self._model = model
        self._speed = speed

    def synthesize(self, text: str, voice_persona: str) -> bytes:
        payload = {
            "model": self._model,
            "voice": voice_persona,
            "input": text,
            "speed": self._speed,
        }
        response = self._client.post("audio/speech", payload)
        if not response.content:
            raise MalformedResponse("Speech endpoint returned no audio")
        logger.debug("speech_synthesized", model=self._model, voice=voice_persona, size=len(response.content))
        return response.content
