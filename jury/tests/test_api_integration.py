"""Integration tests for the FastAPI endpoints.

Uses TestClient against a Courtroom backed by an in-memory database and a
mocked LLM client.
"""
from __future__ import annotations

import itertools
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jury.db import RecordStorage
from jury.errors import RemoteCallFailed
from jury.models import Base, ChatReply, GroundingSource
from jury.services import Courtroom, get_courtroom
from jury.store import CaseFileStore

VERDICT = {
    "case_title": "Uber for Cats",
    "cto": {"thought": "Cats do not use apps.", "verdict": "FAIL. Obviously.", "status": "FAIL"},
    "genZ": {"vibe": "Cat content is eternal.", "verdict": "Cop.", "status": "COP"},
    "mom": {"concerns": "Who pays the cat?", "verdict": "Trust, barely.", "status": "TRUST"},
}


@pytest.fixture()
def court():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    ticks = itertools.count(1_760_000_000_000, 1000)
    store = CaseFileStore(RecordStorage(TestSession, quota_bytes=1_000_000), clock=lambda: next(ticks))
    store.load()

    llm = MagicMock()
    llm.generate_json = AsyncMock(return_value=json.dumps(VERDICT))
    llm.converse = AsyncMock(return_value=ChatReply(
        text="Barb: the cat will not pay.",
        sources=[GroundingSource(title="A", uri="https://x.example")],
    ))
    return Courtroom(store, llm)


@pytest.fixture()
def client(court):
    """FastAPI TestClient wired to the test courtroom."""
    from jury.app import app

    app.dependency_overrides[get_courtroom] = lambda: court
    with patch("jury.app.init_db"), TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def analyzed_client(client):
    """Client with one verdict reached and saved."""
    resp = client.post("/api/analyze", data={"text": "Uber, but for cats"})
    assert resp.status_code == 200
    return client, resp.json()["case"]["id"]


class TestAnalyze:
    def test_text_pitch(self, client):
        resp = client.post("/api/analyze", data={"text": "Uber, but for cats", "language": "fr"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["result"]["case_title"] == "Uber for Cats"
        assert body["result"]["mom"]["status"] == "TRUST"
        assert body["saved"] is True
        assert body["image_dropped"] is False
        assert body["case"]["name"] == "Uber for Cats"
        assert body["case"]["has_image"] is False
        assert client.get("/api/state").json()["language"] == "fr"

    def test_image_pitch(self, client):
        resp = client.post(
            "/api/analyze",
            data={"text": ""},
            files={"image": ("shot.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
        )
        assert resp.status_code == 200
        assert resp.json()["case"]["has_image"] is True
        assert resp.json()["case"]["image_mime_type"] == "image/png"
        state = client.get("/api/state").json()
        assert state["image_preview"].startswith("data:image/png;base64,")

    def test_non_image_upload(self, client):
        resp = client.post(
            "/api/analyze",
            data={"text": "pitch"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )
        assert resp.status_code == 400

    def test_empty_input(self, client, court):
        resp = client.post("/api/analyze", data={"text": "   "})
        assert resp.status_code == 400
        assert resp.json()["error"] == "EmptyInput"
        court.client.generate_json.assert_not_called()

    def test_malformed_reply(self, client, court):
        court.client.generate_json.return_value = '{"case_title": "Half a verdict"}'
        resp = client.post("/api/analyze", data={"text": "pitch"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "MalformedResponse"
        assert client.get("/api/cases").json() == []

    def test_remote_failure(self, client, court):
        court.client.generate_json.side_effect = RemoteCallFailed("quota exhausted")
        resp = client.post("/api/analyze", data={"text": "pitch"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "RemoteCallFailed"


class TestChat:
    def test_chat_before_verdict(self, client):
        resp = client.post("/api/chat", json={"message": "hello?"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "SessionNotPrimed"

    def test_chat(self, analyzed_client):
        c, _ = analyzed_client
        resp = c.post("/api/chat", json={"message": "Would the cat pay?"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["discarded"] is False
        assert body["reply"].endswith("**EVIDENCE EXHIBIT (SOURCES):**\n- [A](https://x.example)")
        history = c.get("/api/state").json()["chat_history"]
        assert [t["role"] for t in history] == ["user", "assistant"]

    def test_blank_message(self, analyzed_client):
        c, _ = analyzed_client
        assert c.post("/api/chat", json={"message": "  "}).status_code == 422

    def test_compare(self, analyzed_client, court):
        c, _ = analyzed_client
        resp = c.post("/api/chat/compare", json={"competitor": "  Acme Corp "})
        assert resp.status_code == 200
        message = court.client.converse.await_args.args[2]
        assert message == "Cross-examine my product against Acme Corp"

    def test_new_case_closes_chat(self, analyzed_client):
        c, _ = analyzed_client
        assert c.post("/api/new-case").status_code == 200
        state = c.get("/api/state").json()
        assert state["result"] is None
        assert state["chat_ready"] is False
        assert c.post("/api/chat", json={"message": "still there?"}).status_code == 409


class TestCaseFiles:
    def test_list(self, analyzed_client):
        c, case_id = analyzed_client
        c.post("/api/analyze", data={"text": "second pitch"})
        cases = c.get("/api/cases").json()
        assert [x["id"] for x in cases][0] == case_id
        assert len(cases) == 2

    def test_rename(self, analyzed_client):
        c, case_id = analyzed_client
        resp = c.put(f"/api/cases/{case_id}", json={"name": "Feline Rideshare"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Feline Rideshare"
        assert c.get("/api/cases").json()[0]["name"] == "Feline Rideshare"

    def test_rename_blank_is_ignored(self, analyzed_client):
        c, case_id = analyzed_client
        resp = c.put(f"/api/cases/{case_id}", json={"name": "   "})
        assert resp.json()["name"] == "Uber for Cats"

    def test_rename_unknown(self, client):
        resp = client.put("/api/cases/123", json={"name": "x"})
        assert resp.status_code == 404

    def test_restore(self, analyzed_client):
        c, case_id = analyzed_client
        c.post("/api/new-case")
        resp = c.post(f"/api/cases/{case_id}/restore")
        assert resp.status_code == 200
        assert resp.json()["case"]["id"] == case_id
        assert resp.json()["image_preview"] is None
        state = c.get("/api/state").json()
        assert state["result"]["case_title"] == "Uber for Cats"
        assert state["chat_ready"] is True
        assert c.post("/api/chat", json={"message": "again?"}).status_code == 200

    def test_restore_unknown(self, client):
        assert client.post("/api/cases/999/restore").status_code == 404

    def test_clear(self, analyzed_client):
        c, _ = analyzed_client
        assert c.delete("/api/cases").status_code == 200
        assert c.get("/api/cases").json() == []


class TestLanguage:
    def test_languages(self, client):
        assert set(client.get("/api/languages").json()["languages"]) == {"en", "fr", "es", "ar"}

    def test_set_language(self, client):
        assert client.put("/api/language", json={"language": "es"}).json() == {"language": "es"}
        assert client.put("/api/language", json={"language": "de"}).json() == {"language": "en"}


class TestSpeech:
    def test_unknown_persona(self, analyzed_client):
        c, _ = analyzed_client
        assert c.post("/api/speech/dad").status_code == 404

    def test_no_verdict(self, client):
        assert client.post("/api/speech/cto").status_code == 409

    def test_audio(self, analyzed_client):
        c, _ = analyzed_client
        with patch("jury.app.speech.synthesize_verdict", AsyncMock(return_value=b"ID3")) as tts:
            resp = c.post("/api/speech/mom")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/mpeg"
        assert resp.content == b"ID3"
        assert tts.await_args.args[0] == "mom"

    def test_tts_failure(self, analyzed_client):
        c, _ = analyzed_client
        failing = AsyncMock(side_effect=RemoteCallFailed("ElevenLabs API Error: 401"))
        with patch("jury.app.speech.synthesize_verdict", failing):
            resp = c.post("/api/speech/cto")
        assert resp.status_code == 502
