"""Read a persona's verdict aloud through the ElevenLabs text-to-speech API.

Nothing here reads or writes the case history or the chat session; a
failure only affects the caller asking for audio.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from jury.errors import RemoteCallFailed
from jury.models import AnalysisResult

log = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
TTS_MODEL = "eleven_turbo_v2_5"
_TIMEOUT = 30.0


@dataclass(frozen=True)
class VoiceProfile:
    voice_id: str
    stability: float
    similarity_boost: float


VOICES: dict[str, VoiceProfile] = {
    "cto": VoiceProfile("2EiwWnXFnvU5JabPnv8n", stability=0.5, similarity_boost=0.5),    # Clyde
    "genz": VoiceProfile("21m00Tcm4TlvDq8ikWAM", stability=0.3, similarity_boost=0.8),   # Rachel
    "mom": VoiceProfile("ThT5KcBeYPX3keUQqHPh", stability=0.7, similarity_boost=0.5),    # Dorothy
}


def speech_text(persona: str, result: AnalysisResult) -> str:
    """Build the line a persona reads out."""
    if persona == "cto":
        v = result.engineer
        return f"{v.thought}. Verdict: {v.verdict}. Decision: {v.status.value}."
    if persona == "genz":
        t = result.trend_analyst
        # Extra emphasis marks make the voice faster and more animated.
        return f"{t.vibe}!! Verdict: {t.verdict}!! Decision: {t.status.value}!!"
    if persona == "mom":
        b = result.budget_keeper
        return f"{b.concerns}. Verdict: {b.verdict}. Decision: {b.status.value}."
    raise ValueError(f"Unknown persona: {persona!r}")


async def synthesize_verdict(
    persona: str,
    result: AnalysisResult,
    api_key: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> bytes:
    """Return MPEG audio of *persona* reading its verdict."""
    voice = VOICES.get(persona)
    if voice is None:
        raise ValueError(f"Unknown persona: {persona!r}")
    key = api_key or os.environ.get("ELEVENLABS_API_KEY", "")
    if not key:
        raise RemoteCallFailed("ELEVENLABS_API_KEY is not set")

    payload = {
        "text": speech_text(persona, result),
        "model_id": TTS_MODEL,
        "voice_settings": {"stability": voice.stability, "similarity_boost": voice.similarity_boost},
    }
    headers = {"Accept": "audio/mpeg", "Content-Type": "application/json", "xi-api-key": key}
    url = ELEVENLABS_TTS_URL.format(voice_id=voice.voice_id)
    try:
        if http_client is not None:
            resp = await http_client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(_TIMEOUT)) as client:
                resp = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise RemoteCallFailed(f"Speech request failed: {exc}", retryable=True) from exc

    if resp.status_code >= 400:
        log.warning("ElevenLabs returned %s for %s", resp.status_code, persona)
        raise RemoteCallFailed(
            f"ElevenLabs API Error: {resp.status_code} - {resp.text[:200]}",
            retryable=resp.status_code >= 500,
        )
    return resp.content
