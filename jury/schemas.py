"""Pydantic request/response schemas for the Jury API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from jury.models import CaseFile


class CaseFileOut(BaseModel):
    id: str
    name: str
    created_at: int
    pitch_text: str
    has_image: bool
    image_mime_type: str | None = None
    result: dict[str, Any]


def case_file_out(case: CaseFile) -> CaseFileOut:
    return CaseFileOut(
        id=case.id,
        name=case.name,
        created_at=case.created_at,
        pitch_text=case.pitch_text,
        has_image=case.image is not None,
        image_mime_type=case.image_mime_type,
        result=case.result.model_dump(mode="json", by_alias=True),
    )


class AnalyzeResponse(BaseModel):
    result: dict[str, Any]
    case: CaseFileOut | None = None
    saved: bool
    image_dropped: bool


class CaseRename(BaseModel):
    name: str


class RestoreResponse(BaseModel):
    case: CaseFileOut
    image_preview: str | None = None
    chat_generation: int


class ChatRequest(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be empty")
        return v


class CompareRequest(BaseModel):
    competitor: str

    @field_validator("competitor")
    @classmethod
    def competitor_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("competitor must not be empty")
        return v


class ChatResponse(BaseModel):
    reply: str | None = None
    discarded: bool = False


class LanguageUpdate(BaseModel):
    language: str


class StateOut(BaseModel):
    language: str
    result: dict[str, Any] | None = None
    pitch_text: str
    image_preview: str | None = None
    chat_history: list[dict[str, str]] = []
    chat_ready: bool
