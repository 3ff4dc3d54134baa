"""Response schema for persona verdicts and the gate every model reply passes.

The remote model is asked to answer in the shape of ``VERDICT_SCHEMA``; the
text it returns is still untrusted.  ``parse_analysis`` is the only way to
turn that text into an ``AnalysisResult``: it either returns a fully valid
result or raises ``MalformedResponse``.  Nothing is defaulted or coerced, so a
status such as ``"MAYBE"`` is rejected rather than mapped to a neutral value.
"""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from jury.errors import MalformedResponse
from jury.models import AnalysisResult, BudgetStatus, EngineerStatus, TrendStatus
from jury.utils import strip_code_fence

log = logging.getLogger(__name__)


def _persona_schema(rationale: str, description: str, statuses: type) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            rationale: {"type": "string", "description": description},
            "verdict": {"type": "string", "description": "The persona's final verdict, one or two punchy sentences."},
            "status": {"type": "string", "enum": [s.value for s in statuses]},
        },
        "required": [rationale, "verdict", "status"],
    }


VERDICT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "case_title": {
            "type": "string",
            "description": (
                "A short, punchy, 3-5 word title summarizing the product idea "
                "based on the input (e.g. 'Uber for Dogs')."
            ),
        },
        "cto": _persona_schema("thought", "Technical reasoning from Rusty (Grumpy Senior Engineer).", EngineerStatus),
        "genZ": _persona_schema("vibe", "Vibe check from Jules (Trend Analyst).", TrendStatus),
        "mom": _persona_schema("concerns", "Concerns from Barb (The Budget Keeper).", BudgetStatus),
    },
    "required": ["case_title", "cto", "genZ", "mom"],
}


def parse_analysis(raw: str | None) -> AnalysisResult:
    """Parse raw model output into a validated ``AnalysisResult``."""
    if raw is None or not raw.strip():
        raise MalformedResponse("Empty response from model")
    try:
        return AnalysisResult.model_validate_json(strip_code_fence(raw))
    except ValidationError as exc:
        log.warning("Rejected model output: %s", exc.errors(include_url=False)[:3])
        raise MalformedResponse(f"Model output does not match the verdict schema: {exc}") from exc


def dump_analysis(result: AnalysisResult) -> str:
    """Serialize a result with its wire field names (``cto``, ``genZ``, ``mom``)."""
    return result.model_dump_json(by_alias=True)
