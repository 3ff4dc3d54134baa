from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class StoredRecord(Base):
    """One keyed blob of serialized data (the history lives under a single key)."""
    __tablename__ = "records"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Verdict model
# ---------------------------------------------------------------------------


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


NonEmptyText = Annotated[str, AfterValidator(_require_text)]


class EngineerStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class TrendStatus(str, Enum):
    COP = "COP"
    DROP = "DROP"


class BudgetStatus(str, Enum):
    TRUST = "TRUST"
    NO_TRUST = "NO TRUST"


class EngineerVerdict(BaseModel):
    """RUSTY, the skeptical senior engineer."""
    thought: NonEmptyText
    verdict: NonEmptyText
    status: EngineerStatus


class TrendVerdict(BaseModel):
    """JULES, the Gen-Z trend analyst."""
    vibe: NonEmptyText
    verdict: NonEmptyText
    status: TrendStatus


class BudgetVerdict(BaseModel):
    """BARB, the budget keeper."""
    concerns: NonEmptyText
    verdict: NonEmptyText
    status: BudgetStatus


class AnalysisResult(BaseModel):
    """Wire names only: model output keyed by the Python field names is rejected."""

    case_title: NonEmptyText
    engineer: EngineerVerdict = Field(alias="cto")
    trend_analyst: TrendVerdict = Field(alias="genZ")
    budget_keeper: BudgetVerdict = Field(alias="mom")


# ---------------------------------------------------------------------------
# Case files
# ---------------------------------------------------------------------------

CASE_FILE_VERSION = 1


class ImageData(BaseModel):
    data: str  # base64, no data-URL prefix
    mime_type: str

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class CaseFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: NonEmptyText
    created_at: int = Field(alias="timestamp")  # epoch milliseconds
    pitch_text: str = Field("", alias="pitchText")
    image_base64: str | None = Field(None, alias="imageBase64")
    image_mime_type: str | None = Field(None, alias="imageMimeType")
    result: AnalysisResult = Field(alias="response")
    version: int = CASE_FILE_VERSION

    @property
    def image(self) -> ImageData | None:
        if self.image_base64 and self.image_mime_type:
            return ImageData(data=self.image_base64, mime_type=self.image_mime_type)
        return None

    def without_image(self) -> CaseFile:
        return self.model_copy(update={"image_base64": None, "image_mime_type": None})

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class GroundingSource(BaseModel):
    title: str
    uri: str


class ChatReply(BaseModel):
    text: str
    sources: list[GroundingSource] = []
