"""Shared application state for the Jury API and MCP server.

``Courtroom`` plays the part of the single-page app around the core: it holds
the active verdict, the input fields, the transient chat transcript and the
selected language, refuses overlapping triggers, and drops chat replies that
arrive after the session they were sent to has been replaced.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from jury.analysis import submit_analysis
from jury.chat import COMPARE_PROMPT, ChatSessionManager
from jury.db import RecordStorage
from jury.errors import CallInFlight, StorageFailed
from jury.llm import LLMClient
from jury.models import AnalysisResult, CaseFile, ChatTurn, ImageData
from jury.restore import RestoredCase, restore
from jury.store import CaseFileStore

log = logging.getLogger(__name__)

LANGUAGES: dict[str, str] = {
    "en": "English",
    "fr": "French",
    "es": "Spanish",
    "ar": "Arabic",
}
DEFAULT_LANGUAGE = "en"


def normalize_language(code: str | None) -> str:
    """Lower-case, trimmed language code; unknown codes become ``en``."""
    code = (code or "").strip().lower()
    return code if code in LANGUAGES else DEFAULT_LANGUAGE


def language_label(code: str | None) -> str:
    return LANGUAGES[normalize_language(code)]


@dataclass
class AnalysisOutcome:
    result: AnalysisResult
    case: CaseFile | None
    saved: bool
    image_dropped: bool


class Courtroom:
    def __init__(self, store: CaseFileStore, client: LLMClient, chat: ChatSessionManager | None = None):
        self.store = store
        self.client = client
        self.chat = chat or ChatSessionManager(client)
        self.language = DEFAULT_LANGUAGE
        self.result: AnalysisResult | None = None
        self.pitch_text = ""
        self.image_preview: str | None = None
        self.chat_history: list[ChatTurn] = []
        self._analysis_busy = False
        self._chat_busy = False

    def set_language(self, code: str) -> str:
        self.language = normalize_language(code)
        return self.language

    def snapshot(self) -> dict:
        return {
            "language": self.language,
            "result": self.result.model_dump(mode="json", by_alias=True) if self.result else None,
            "pitch_text": self.pitch_text,
            "image_preview": self.image_preview,
            "chat_history": [t.model_dump() for t in self.chat_history],
            "chat_ready": self.chat.session is not None,
        }

    # -- analysis -----------------------------------------------------------

    async def analyze(self, pitch_text: str, image: ImageData | None, language: str | None = None) -> AnalysisOutcome:
        if self._analysis_busy:
            raise CallInFlight("An analysis is already running")
        code = normalize_language(language) if language else self.language
        self._analysis_busy = True
        self.result = None
        self.chat_history = []
        try:
            result = await submit_analysis(
                pitch_text, image, language_label(code), self.client, self.chat,
            )
        finally:
            self._analysis_busy = False

        self.language = code
        self.result = result
        self.pitch_text = pitch_text
        self.image_preview = image.data_url() if image else None

        case: CaseFile | None = None
        try:
            case = self.store.append(pitch_text, image, result)
        except StorageFailed as exc:
            log.error("Verdict reached but not saved to history: %s", exc)
        image_dropped = image is not None and case is not None and case.image is None
        return AnalysisOutcome(result=result, case=case, saved=case is not None, image_dropped=image_dropped)

    # -- chat ---------------------------------------------------------------

    async def _converse(self, message: str, send) -> str | None:
        if self._chat_busy:
            raise CallInFlight("The jury is still answering")
        generation = self.chat.generation
        self._chat_busy = True
        try:
            reply = await send()
        finally:
            self._chat_busy = False
        if not self.chat.is_current(generation):
            log.info("Discarding reply for superseded chat session %d", generation)
            return None
        self.chat_history.append(ChatTurn(role="user", text=message))
        self.chat_history.append(ChatTurn(role="assistant", text=reply))
        return reply

    async def send(self, message: str) -> str | None:
        return await self._converse(message, lambda: self.chat.send(message))

    async def compare(self, competitor_name: str) -> str | None:
        message = COMPARE_PROMPT.format(competitor=competitor_name)
        return await self._converse(message, lambda: self.chat.compare(competitor_name))

    # -- history ------------------------------------------------------------

    def select_case(self, case_id: str) -> RestoredCase:
        restored = restore(self.store.get(case_id), self.chat, language_label(self.language))
        self.result = restored.result
        self.pitch_text = restored.pitch_text
        self.image_preview = restored.image_preview
        self.chat_history = restored.chat_history
        return restored

    def new_case(self) -> None:
        """Blank the form and verdict; chat is unavailable until the next verdict."""
        self.result = None
        self.pitch_text = ""
        self.image_preview = None
        self.chat_history = []
        self.chat.invalidate()


_courtroom: Courtroom | None = None


def get_courtroom() -> Courtroom:
    """Process-wide courtroom; ``init_db()`` must have been called first."""
    global _courtroom
    if _courtroom is None:
        store = CaseFileStore(RecordStorage())
        store.load()
        _courtroom = Courtroom(store, LLMClient())
    return _courtroom
