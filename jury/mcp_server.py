from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from jury.db import init_db
from jury.errors import JuryError
from jury.schemas import case_file_out
from jury.services import LANGUAGES, get_courtroom

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def jury_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "The Jury",
    instructions=(
        "The Jury is a synthetic focus group. Submit a product pitch with "
        "analyze_pitch() to get verdicts from Rusty (engineer), Jules (trend analyst) "
        "and Barb (budget keeper), then ask_jury() follow-ups or cross_examine() a "
        "competitor. Past analyses are case files: list_case_files(), restore_case_file()."
    ),
    lifespan=jury_lifespan,
    json_response=True,
)


def _error(exc: JuryError) -> dict:
    return {"error": str(exc), "type": type(exc).__name__}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("jury://overview")
def jury_overview() -> str:
    """Overview of The Jury: personas, statuses and workflow."""
    return json.dumps({
        "system": "The Jury: Synthetic Focus Group",
        "personas": {
            "cto": "RUSTY, grumpy senior engineer. Status PASS or FAIL.",
            "genZ": "JULES, Gen-Z trend analyst. Status COP or DROP.",
            "mom": "BARB, budget keeper. Status TRUST or NO TRUST.",
        },
        "workflow": [
            "1. analyze_pitch(text, language): verdict from all three personas; saved as a case file.",
            "2. ask_jury(message): follow-up question about the active verdict.",
            "3. cross_examine(competitor): web-search grounded comparison with sources.",
            "4. list_case_files() / restore_case_file(id): reload an earlier verdict and its chat context.",
            "5. rename_case_file(id, name) / clear_case_files(): manage history.",
        ],
        "languages": LANGUAGES,
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def analyze_pitch(text: str, language: str = "en") -> dict:
    """Get the jury's verdict on a text pitch.

    Args:
        text: Landing page copy, product manifesto, or startup idea.
        language: Verdict language code: en, fr, es, ar.
    """
    try:
        outcome = await get_courtroom().analyze(text, None, language)
    except JuryError as exc:
        return _error(exc)
    return {
        "result": outcome.result.model_dump(mode="json", by_alias=True),
        "case_id": outcome.case.id if outcome.case else None,
        "saved": outcome.saved,
    }


@mcp.tool()
async def ask_jury(message: str) -> dict:
    """Ask a follow-up question about the active verdict."""
    try:
        reply = await get_courtroom().send(message)
    except JuryError as exc:
        return _error(exc)
    return {"reply": reply, "discarded": reply is None}


@mcp.tool()
async def cross_examine(competitor: str) -> dict:
    """Compare the active pitch against a named competitor using web search."""
    try:
        reply = await get_courtroom().compare(competitor)
    except JuryError as exc:
        return _error(exc)
    return {"reply": reply, "discarded": reply is None}


@mcp.tool()
def list_case_files() -> list[dict]:
    """List stored case files, oldest first."""
    return [case_file_out(c).model_dump() for c in get_courtroom().store.list_cases()]


@mcp.tool()
def restore_case_file(case_id: str) -> dict:
    """Make a stored case the active verdict and re-prime the chat with it."""
    try:
        restored = get_courtroom().select_case(case_id)
    except JuryError as exc:
        return _error(exc)
    return {
        "case_id": restored.case_id,
        "name": restored.name,
        "result": restored.result.model_dump(mode="json", by_alias=True),
    }


@mcp.tool()
def rename_case_file(case_id: str, name: str) -> dict:
    """Rename a case file. A blank name leaves it unchanged."""
    try:
        case = get_courtroom().store.rename(case_id, name)
    except JuryError as exc:
        return _error(exc)
    return {"case_id": case.id, "name": case.name}


@mcp.tool()
def clear_case_files() -> dict:
    """Delete every stored case file."""
    try:
        get_courtroom().store.clear()
    except JuryError as exc:
        return _error(exc)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Jury MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
