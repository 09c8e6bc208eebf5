"""
Voice audio rendering.

Synthesizes speech for the session's voice segments through the speech
collaborator and caches the results in the session store, keyed by voice
segment id, with one store write per pass. Already cached segments are
skipped. A failed synthesis is logged and skipped; playback proceeds without
that audio.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime

from hymn.infra.exceptions import UpstreamError
from hymn.runtime.collaborators import SpeechSynthesizer, call_with_timeout
from hymn.runtime.segment_types import BroadcastSession, VoiceSegment, ensure_utc
from hymn.runtime.session_store import SessionStore

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPE = "audio/mpeg"


def encode_audio_ref(audio: bytes, mime_type: str = AUDIO_MIME_TYPE) -> str:
    """Opaque, self-contained reference for rendered audio (a data URL)."""
    return f"data:{mime_type};base64,{base64.b64encode(audio).decode('ascii')}"


def decode_audio_ref(ref: str) -> bytes:
    _, _, data = ref.partition(";base64,")
    return base64.b64decode(data)


class VoiceRenderer:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        store: SessionStore,
        *,
        timeout_seconds: float | None = 20.0,
    ) -> None:
        self._synthesizer = synthesizer
        self._store = store
        self._timeout_s = timeout_seconds

    def render_session(
        self,
        session: BroadcastSession,
        voice_persona: str,
        from_time: datetime | None = None,
    ) -> int:
        """Render voice audio for ``session``; returns how many segments were cached.

        With ``from_time``, blocks that ended before it are skipped.
        """
        cutoff = ensure_utc(from_time) if from_time is not None else None
        refs: dict[str, str] = {}
        failed = 0
        for block in session.blocks:
            if cutoff is not None and block.end_time <= cutoff:
                continue
            for voice in block.voice_segments:
                if voice.id in session.voice_audio or voice.audio_ref:
                    continue
                ref = self._render(voice, voice_persona)
                if ref is None:
                    failed += 1
                    continue
                refs[voice.id] = ref

        # One store write for the whole pass
        rendered = self._store.cache_voice_audio_many(refs)
        if rendered:
            session.voice_audio.update(refs)

        level = logging.WARNING if failed else logging.INFO
        logger.log(level, "Voice rendering: cached=%d failed=%d session=%s", rendered, failed, session.id)
        return rendered

    def audio_ref_for(self, voice: VoiceSegment) -> str | None:
        """Rendered audio for ``voice`` from the segment itself or the store cache."""
        return voice.audio_ref or self._store.get_voice_audio(voice.id)

    def _render(self, voice: VoiceSegment, voice_persona: str) -> str | None:
        try:
            audio = call_with_timeout(
                self._synthesizer.synthesize,
                self._timeout_s,
                voice.content,
                voice_persona,
                name="speech-synthesizer",
            )
        except UpstreamError as exc:
            logger.warning("Speech synthesis unavailable for %s (%s): %s", voice.id, exc.error_code, exc)
            return None
        except Exception:
            logger.warning("Speech synthesis failed for %s", voice.id, exc_info=True)
            return None
        if not audio:
            logger.warning("Speech synthesis returned no audio for %s", voice.id)
            return None
        return encode_audio_ref(audio)
