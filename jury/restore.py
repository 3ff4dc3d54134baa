"""Reload a stored case as if its analysis had just finished."""
from __future__ import annotations

from dataclasses import dataclass, field

from jury.analysis import build_context_summary
from jury.chat import ChatSessionManager
from jury.models import AnalysisResult, CaseFile, ChatTurn


@dataclass
class RestoredCase:
    case_id: str
    name: str
    result: AnalysisResult
    pitch_text: str
    image_preview: str | None  # data: URL
    generation: int
    chat_history: list[ChatTurn] = field(default_factory=list)


def restore(case: CaseFile, chat: ChatSessionManager, language: str) -> RestoredCase:
    """Re-prime *chat* from *case* and return the state to display."""
    image = case.image
    summary = build_context_summary(
        case.pitch_text, case.result, has_image=image is not None, reloaded_name=case.name,
    )
    session = chat.prime(summary, language)
    return RestoredCase(
        case_id=case.id,
        name=case.name,
        result=case.result,
        pitch_text=case.pitch_text,
        image_preview=image.data_url() if image else None,
        generation=session.generation,
    )
