"""Tests for verdict text-to-speech (jury.speech)."""
from __future__ import annotations

import json

import httpx
import pytest

from jury.errors import RemoteCallFailed
from jury.models import AnalysisResult
from jury.speech import VOICES, speech_text, synthesize_verdict


@pytest.fixture()
def result() -> AnalysisResult:
    return AnalysisResult.model_validate({
        "case_title": "Smart Fridge Ads",
        "cto": {"thought": "Ads on a fridge", "verdict": "No", "status": "FAIL"},
        "genZ": {"vibe": "Kinda dystopian", "verdict": "Drop", "status": "DROP"},
        "mom": {"concerns": "Will it order milk without asking", "verdict": "Never", "status": "NO TRUST"},
    })


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSpeechText:
    def test_cto(self, result):
        assert speech_text("cto", result) == "Ads on a fridge. Verdict: No. Decision: FAIL."

    def test_genz_is_emphatic(self, result):
        assert speech_text("genz", result) == "Kinda dystopian!! Verdict: Drop!! Decision: DROP!!"

    def test_mom(self, result):
        assert speech_text("mom", result).endswith("Decision: NO TRUST.")

    def test_unknown(self, result):
        with pytest.raises(ValueError):
            speech_text("dad", result)


class TestSynthesize:
    @pytest.mark.asyncio
    async def test_request_shape(self, result):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3audio")

        async with _client(handler) as http:
            audio = await synthesize_verdict("genz", result, api_key="el-key", http_client=http)

        assert audio == b"ID3audio"
        assert seen["url"].endswith(VOICES["genz"].voice_id)
        assert seen["key"] == "el-key"
        assert seen["body"]["model_id"] == "eleven_turbo_v2_5"
        assert seen["body"]["voice_settings"] == {"stability": 0.3, "similarity_boost": 0.8}

    @pytest.mark.asyncio
    async def test_missing_key(self, result, monkeypatch):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        with pytest.raises(RemoteCallFailed):
            await synthesize_verdict("cto", result)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(401, False), (429, False), (503, True)])
    async def test_error_status(self, result, status, retryable):
        async with _client(lambda request: httpx.Response(status, text="nope")) as http:
            with pytest.raises(RemoteCallFailed) as exc_info:
                await synthesize_verdict("mom", result, api_key="k", http_client=http)
        assert exc_info.value.retryable is retryable
        assert str(status) in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self, result):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        async with _client(handler) as http:
            with pytest.raises(RemoteCallFailed) as exc_info:
                await synthesize_verdict("cto", result, api_key="k", http_client=http)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unknown_persona(self, result):
        with pytest.raises(ValueError):
            await synthesize_verdict("dad", result, api_key="k")
