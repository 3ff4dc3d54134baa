from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from jury import speech
from jury.db import init_db
from jury.errors import (
    CallInFlight,
    EmptyInput,
    JuryError,
    MalformedResponse,
    NotFound,
    RemoteCallFailed,
    SessionNotPrimed,
    StorageFailed,
)
from jury.models import ImageData
from jury.schemas import (
    AnalyzeResponse,
    CaseFileOut,
    CaseRename,
    ChatRequest,
    ChatResponse,
    CompareRequest,
    LanguageUpdate,
    RestoreResponse,
    StateOut,
    case_file_out,
)
from jury.services import LANGUAGES, Courtroom, get_courtroom

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="The Jury",
    version="0.1.0",
    description=(
        "Synthetic focus group API. Submit a pitch (text and/or image) and get "
        "verdicts from three personas: Rusty (senior engineer), Jules (trend "
        "analyst) and Barb (budget keeper). Follow up in chat, cross-examine a "
        "competitor with web search, and recall past case files."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Analysis", "description": "Submit a pitch for a verdict. Requires an LLM API key."},
        {"name": "Chat", "description": "Follow-up questions and competitor cross-examination."},
        {"name": "Case Files", "description": "Stored analyses: list, rename, clear, restore."},
        {"name": "Speech", "description": "Persona verdicts read aloud. Requires ELEVENLABS_API_KEY."},
        {"name": "State", "description": "Active verdict, transcript and language."},
    ],
)

_ERROR_STATUS: list[tuple[type[JuryError], int]] = [
    (EmptyInput, 400),
    (NotFound, 404),
    (SessionNotPrimed, 409),
    (CallInFlight, 409),
    (RemoteCallFailed, 502),
    (MalformedResponse, 502),
    (StorageFailed, 507),
]


@app.exception_handler(JuryError)
async def jury_error_handler(request: Request, exc: JuryError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        log.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


# ---------------------------------------------------------------------------
# Routes: State
# ---------------------------------------------------------------------------


@app.get("/api/state", response_model=StateOut, tags=["State"], summary="Active verdict, inputs and chat transcript")
async def get_state(court: Courtroom = Depends(get_courtroom)):
    return court.snapshot()


@app.get("/api/languages", tags=["State"], summary="Supported verdict languages")
async def list_languages():
    return {"languages": LANGUAGES}


@app.put("/api/language", tags=["State"], summary="Select the verdict language (unknown codes fall back to en)")
async def set_language(body: LanguageUpdate, court: Courtroom = Depends(get_courtroom)):
    return {"language": court.set_language(body.language)}


@app.post("/api/new-case", tags=["State"], summary="Blank the verdict and close the chat session")
async def new_case(court: Courtroom = Depends(get_courtroom)):
    court.new_case()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Analysis
# ---------------------------------------------------------------------------


@app.post("/api/analyze", response_model=AnalyzeResponse,
          tags=["Analysis"], summary="Get the jury's verdict on a pitch (text and/or image)")
async def analyze(
    text: str = Form(""),
    language: str | None = Form(None),
    image: UploadFile | None = File(None),
    court: Courtroom = Depends(get_courtroom),
):
    image_data = None
    if image is not None and image.filename:
        content = await image.read()
        if content:
            if not (image.content_type or "").startswith("image/"):
                raise HTTPException(400, "Only image uploads are supported")
            image_data = ImageData(data=base64.b64encode(content).decode("ascii"), mime_type=image.content_type)
    outcome = await court.analyze(text, image_data, language)
    return {
        "result": outcome.result.model_dump(mode="json", by_alias=True),
        "case": case_file_out(outcome.case) if outcome.case else None,
        "saved": outcome.saved,
        "image_dropped": outcome.image_dropped,
    }


# ---------------------------------------------------------------------------
# Routes: Chat
# ---------------------------------------------------------------------------


@app.post("/api/chat", response_model=ChatResponse, tags=["Chat"], summary="Ask the jury a follow-up question")
async def chat(body: ChatRequest, court: Courtroom = Depends(get_courtroom)):
    reply = await court.send(body.message)
    return {"reply": reply, "discarded": reply is None}


@app.post("/api/chat/compare", response_model=ChatResponse,
          tags=["Chat"], summary="Cross-examine the pitch against a competitor (web-search grounded)")
async def compare(body: CompareRequest, court: Courtroom = Depends(get_courtroom)):
    reply = await court.compare(body.competitor)
    return {"reply": reply, "discarded": reply is None}


# ---------------------------------------------------------------------------
# Routes: Case Files
# ---------------------------------------------------------------------------


@app.get("/api/cases", response_model=list[CaseFileOut], tags=["Case Files"], summary="List case files, oldest first")
async def list_cases(court: Courtroom = Depends(get_courtroom)):
    return [case_file_out(c) for c in court.store.list_cases()]


@app.put("/api/cases/{case_id}", response_model=CaseFileOut,
         tags=["Case Files"], summary="Rename a case file (blank names are ignored)")
async def rename_case(case_id: str, body: CaseRename, court: Courtroom = Depends(get_courtroom)):
    return case_file_out(court.store.rename(case_id, body.name))


@app.delete("/api/cases", tags=["Case Files"], summary="Delete every case file")
async def clear_cases(court: Courtroom = Depends(get_courtroom)):
    court.store.clear()
    return {"ok": True}


@app.post("/api/cases/{case_id}/restore", response_model=RestoreResponse,
          tags=["Case Files"], summary="Reload a case file and re-prime the chat")
async def restore_case(case_id: str, court: Courtroom = Depends(get_courtroom)):
    restored = court.select_case(case_id)
    return {
        "case": case_file_out(court.store.get(case_id)),
        "image_preview": restored.image_preview,
        "chat_generation": restored.generation,
    }


# ---------------------------------------------------------------------------
# Routes: Speech
# ---------------------------------------------------------------------------


@app.post("/api/speech/{persona}", tags=["Speech"], summary="Synthesize a persona's verdict as MPEG audio")
async def speak(persona: str, court: Courtroom = Depends(get_courtroom)):
    if persona not in speech.VOICES:
        raise HTTPException(404, f"Unknown persona '{persona}'")
    if court.result is None:
        raise HTTPException(409, "No verdict to read")
    audio = await speech.synthesize_verdict(persona, court.result)
    return Response(content=audio, media_type="audio/mpeg")


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("jury.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
