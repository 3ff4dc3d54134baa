"""Pitch analysis: one remote call, three persona verdicts.

``submit_analysis`` sends the pitch (text and/or image) to the model with the
persona instructions and the verdict schema, validates the reply, and primes
the follow-up chat with a condensed summary of the verdict.  Remote failures
and malformed replies propagate unchanged; retrying is the caller's call.
"""
from __future__ import annotations

import logging

from jury.chat import ChatSessionManager
from jury.errors import EmptyInput
from jury.llm import LLMClient
from jury.models import AnalysisResult, ImageData
from jury.utils import excerpt
from jury.validation import VERDICT_SCHEMA, parse_analysis

log = logging.getLogger(__name__)

SUMMARY_PITCH_LIMIT = 200

ANALYSIS_PROMPT = """\
You are "THE JURY", a brutalist synthetic focus group engine simulating three \
distinct characters in a sitcom-like setting.

TASK 1: TITLE GENERATION
Analyze the input (Text or Image) and generate a short, punchy, 3-5 word title \
that summarizes the product idea.
Example (Text): "Uber for Dogs"
Example (Image): "Cluttered SaaS Dashboard"
Tone: Objective but descriptive.

TASK 2: PERSONA ANALYSIS
Analyze the input from these three radical perspectives:

1. RUSTY (The Skeptical CTO):
   - Vibe: Grumpy Senior Engineer. Hates "AI wrappers", loves open source/Linux. Cynical about buzzwords.
   - Focus: Security flaws, technical debt, and "is this just a ChatGPT wrapper?".
   - status: PASS or FAIL.

2. JULES (The Gen-Z Shopper):
   - Vibe: Trend Analyst. Uses slang naturally (no cap, mid, ick, it's giving...), obsessed with aesthetics.
   - Focus: Design, "cringe" factor, mobile responsiveness, and vibes. Impatient.
   - status: COP or DROP.

3. BARB (The Value Mom):
   - Vibe: The Budget Keeper. Practical, polite but suspicious.
   - Focus: Hidden fees, safety, "is this a subscription?", and family utility.
   - status: TRUST or NO TRUST.

Be critical. Do not hold back. Stay in character.

OUTPUT INSTRUCTION: The user has requested the verdict in {language}.
You must translate the response fully, BUT maintain the specific persona archetypes:
- RUSTY: Use technical jargon in the target language.
- JULES: Use current Gen-Z slang appropriate for that language (e.g., use French 'verlan' or Spanish slang).
- BARB: Use 'Mom idioms' specific to that language's culture.
The JSON keys and the status values always stay in English exactly as specified.
"""


def build_analysis_prompt(language: str) -> str:
    return ANALYSIS_PROMPT.format(language=language)


def build_context_summary(
    pitch_text: str,
    result: AnalysisResult,
    *,
    has_image: bool = False,
    reloaded_name: str | None = None,
) -> str:
    """Condense a verdict into the digest that primes follow-up chat.

    The same construction is used right after an analysis and when a stored
    case is reloaded; the reloaded variant carries a marker line naming the case.
    """
    lines: list[str] = []
    if reloaded_name is not None:
        lines.append(f'[HISTORICAL CASE RELOADED: "{reloaded_name}"]')
    user_input = excerpt(pitch_text, SUMMARY_PITCH_LIMIT)
    if has_image:
        user_input = f"{user_input} (+ Image Uploaded)".strip()
    lines.append(f"User Input: {user_input}")
    lines.append("")
    eng, trend, budget = result.engineer, result.trend_analyst, result.budget_keeper
    lines.append(f"RUSTY (CTO): {eng.thought} (Verdict: {eng.status.value})")
    lines.append(f"JULES (Gen-Z): {trend.vibe} (Verdict: {trend.status.value})")
    lines.append(f"BARB (Mom): {budget.concerns} (Verdict: {budget.status.value})")
    return "\n".join(lines)


async def submit_analysis(
    pitch_text: str,
    image: ImageData | None,
    language: str,
    client: LLMClient,
    chat: ChatSessionManager,
) -> AnalysisResult:
    """Run one analysis and prime the chat session with its summary."""
    text = pitch_text.strip()
    if not text and image is None:
        raise EmptyInput("No content provided to analyze.")

    raw = await client.generate_json(
        build_analysis_prompt(language), text or None, image, VERDICT_SCHEMA,
    )
    result = parse_analysis(raw)
    log.info("Verdict reached for %r", result.case_title)

    summary = build_context_summary(pitch_text, result, has_image=image is not None)
    chat.prime(summary, language)
    return result
