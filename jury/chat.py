"""Follow-up conversation with the jury after a verdict.

One ``ChatSessionManager`` owns at most one active ``ChatSession``.  Each
``prime`` call builds a fresh session with a higher ``generation`` number;
nothing from the previous session is carried over.  A reply that arrives for
a superseded session is still returned by ``send`` (the remote call already
happened), so callers hold the generation they started with and check
``is_current`` before using the reply.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from jury.errors import SessionNotPrimed
from jury.llm import LLMClient
from jury.models import ChatTurn, GroundingSource

log = logging.getLogger(__name__)

SOURCES_HEADER = "**EVIDENCE EXHIBIT (SOURCES):**"
EMPTY_REPLY = "No response."

MODERATOR_PROMPT = """\
You are the moderator and collective voice of "THE JURY".
You consist of three specific characters:

1. RUSTY (Grumpy Senior Engineer)
2. JULES (Gen-Z Trend Analyst)
3. BARB (The Budget Keeper / Mom)

You have just analyzed the user's product.

CONTEXT OF ANALYSIS:
{context}

Answer the user's follow-up questions. You can answer as the group moderator \
summarizing their views, or let specific personas (Rusty, Jules, Barb) speak \
directly if the question targets them.

CROSS-EXAMINATION PROTOCOL:
If the user asks to compare/cross-examine against a competitor, you MUST use \
the web search tool to find real-time data on the competitor (Pricing, \
Features, Recent Scandals).
The Personas must aggressively compare the User's Product vs. The Competitor.
- RUSTY checks tech stack/features.
- JULES checks relevance/cool factor.
- BARB checks price/value.

Keep the distinct tones:
- Rusty: Technical, grumpy, curt.
- Jules: Slang-heavy, aesthetic-focused, casual.
- Barb: Practical, worried about money/safety.

OUTPUT INSTRUCTION: The user has requested the verdict in {language}.
You must translate the response fully, BUT maintain the specific persona archetypes:
- RUSTY: Use technical jargon in the target language.
- JULES: Use current Gen-Z slang appropriate for that language.
- BARB: Use 'Mom idioms' specific to that language's culture.
"""

COMPARE_PROMPT = "Cross-examine my product against {competitor}"


def build_moderator_prompt(context_summary: str, language: str) -> str:
    return MODERATOR_PROMPT.format(context=context_summary.strip(), language=language)


def format_sources(sources: list[GroundingSource]) -> str:
    """Render distinct sources as a markdown bullet list, keeping their order."""
    seen: set[tuple[str, str]] = set()
    lines: list[str] = []
    for src in sources:
        if not src.title or not src.uri:
            continue
        key = (src.title, src.uri)
        if key in seen:
            continue
        seen.add(key)
        lines.append(f"- [{src.title}]({src.uri})")
    if not lines:
        return ""
    return f"{SOURCES_HEADER}\n" + "\n".join(lines)


@dataclass
class ChatSession:
    generation: int
    system_instruction: str
    language: str
    web_search: bool = True
    turns: list[ChatTurn] = field(default_factory=list)


class ChatSessionManager:
    def __init__(self, client: LLMClient):
        self._client = client
        self._session: ChatSession | None = None
        self._generation = 0

    @property
    def session(self) -> ChatSession | None:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return self._session is not None and generation == self._generation

    def prime(self, context_summary: str, language: str) -> ChatSession:
        """Replace the active session with a fresh one built from *context_summary*."""
        self._generation += 1
        self._session = ChatSession(
            generation=self._generation,
            system_instruction=build_moderator_prompt(context_summary, language),
            language=language,
        )
        log.debug("Primed chat session generation %d (%s)", self._generation, language)
        return self._session

    def invalidate(self) -> None:
        self._session = None

    async def send(self, message: str) -> str:
        session = self._session
        if session is None:
            raise SessionNotPrimed("Chat session not initialized. Run analysis first.")

        reply = await self._client.converse(
            session.system_instruction, list(session.turns), message, web_search=session.web_search,
        )
        text = reply.text or EMPTY_REPLY
        session.turns.append(ChatTurn(role="user", text=message))
        session.turns.append(ChatTurn(role="assistant", text=text))

        sources = format_sources(reply.sources)
        if sources:
            text = f"{text}\n\n{sources}"
        return text

    async def compare(self, competitor_name: str) -> str:
        return await self.send(COMPARE_PROMPT.format(competitor=competitor_name))
