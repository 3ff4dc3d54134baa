"""Async client for the two remote model calls the jury makes.

- ``generate_json``: one-shot generation constrained to a JSON schema, with
  optional image input.  Used for the initial verdict.
- ``converse``: a turn in a moderated conversation, optionally allowed to
  search the web.  Returns the reply text plus any grounding sources the
  provider attached, in the order the provider returned them.

Providers: Anthropic (default), OpenAI / OpenAI-compatible, and Google
Gemini.  SDKs are imported lazily so only the selected one must be installed.
Every failure below this module surfaces as ``RemoteCallFailed``.
"""
from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any

from jury.errors import RemoteCallFailed
from jury.models import ChatReply, ChatTurn, GroundingSource, ImageData
from jury.utils import strip_code_fence

log = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "openai_compatible": "gpt-4o-mini",
    "gemini": "gemini-3-pro-preview",
}
DEFAULT_OPENAI_SEARCH_MODEL = "gpt-4o-mini-search-preview"
ANTHROPIC_WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}
MAX_TOKENS = 4096


def _schema_instruction(schema: dict[str, Any]) -> str:
    return (
        "\n\nRespond with ONLY valid JSON matching this JSON schema:\n"
        + json.dumps(schema, indent=2)
    )


# ---------------------------------------------------------------------------
# Grounding source extraction (one per provider response shape)
# ---------------------------------------------------------------------------


def _source(title: Any, uri: Any) -> GroundingSource | None:
    if not title or not uri:
        return None
    return GroundingSource(title=str(title), uri=str(uri))


def anthropic_sources(response: Any) -> list[GroundingSource]:
    """Web-search citations attached to Anthropic text blocks."""
    sources: list[GroundingSource] = []
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        for citation in getattr(block, "citations", None) or []:
            src = _source(getattr(citation, "title", None), getattr(citation, "url", None))
            if src:
                sources.append(src)
    return sources


def openai_sources(message: Any) -> list[GroundingSource]:
    """``url_citation`` annotations on an OpenAI chat completion message."""
    sources: list[GroundingSource] = []
    for ann in getattr(message, "annotations", None) or []:
        if getattr(ann, "type", None) != "url_citation":
            continue
        cite = getattr(ann, "url_citation", None)
        src = _source(getattr(cite, "title", None), getattr(cite, "url", None))
        if src:
            sources.append(src)
    return sources


def gemini_sources(response: Any) -> list[GroundingSource]:
    """Grounding chunks from the first Gemini candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    sources: list[GroundingSource] = []
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        src = _source(getattr(web, "title", None), getattr(web, "uri", None))
        if src:
            sources.append(src)
    return sources


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Unified async LLM client supporting Anthropic, OpenAI and Gemini."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self.search_model = os.environ.get("LLM_SEARCH_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.search_model = self.search_model or DEFAULT_OPENAI_SEARCH_MODEL
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        elif self.provider == "gemini":
            from google import genai
            self._client = genai.Client(api_key=self._api_key or os.environ.get("GEMINI_API_KEY"))
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")
        self.model = self.model or DEFAULT_MODELS[self.provider]

    # -- one-shot structured generation ------------------------------------

    async def generate_json(
        self,
        system: str,
        text: str | None,
        image: ImageData | None,
        schema: dict[str, Any],
    ) -> str:
        """Send text and/or image, return the raw JSON text of the reply.

        The result is *not* validated here; see ``jury.validation``.
        """
        try:
            if self.provider == "anthropic":
                content: list[dict[str, Any]] = []
                if image is not None:
                    content.append({
                        "type": "image",
                        "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
                    })
                if text:
                    content.append({"type": "text", "text": text})
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=MAX_TOKENS,
                    system=system + _schema_instruction(schema),
                    messages=[{"role": "user", "content": content}],
                )
                raw = "".join(b.text for b in response.content if getattr(b, "type", None) == "text")
                return strip_code_fence(raw)

            if self.provider == "gemini":
                from google.genai import types
                parts = []
                if image is not None:
                    parts.append(types.Part.from_bytes(
                        data=base64.b64decode(image.data), mime_type=image.mime_type,
                    ))
                if text:
                    parts.append(types.Part.from_text(text=text))
                response = await self._client.aio.models.generate_content(
                    model=self.model,
                    contents=[types.Content(role="user", parts=parts)],
                    config=types.GenerateContentConfig(
                        system_instruction=system,
                        response_mime_type="application/json",
                        response_schema=schema,
                    ),
                )
                return response.text or ""

            user_content: list[dict[str, Any]] = []
            if image is not None:
                user_content.append({"type": "image_url", "image_url": {"url": image.data_url()}})
            if text:
                user_content.append({"type": "text", "text": text})
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system + _schema_instruction(schema)},
                    {"role": "user", "content": user_content},
                ],
            )
            return response.choices[0].message.content or ""
        except RemoteCallFailed:
            raise
        except Exception as exc:
            raise RemoteCallFailed(f"LLM API call failed: {exc}", retryable=True) from exc

    # -- moderated conversation --------------------------------------------

    async def converse(
        self,
        system: str,
        history: list[ChatTurn],
        message: str,
        web_search: bool = False,
    ) -> ChatReply:
        """Send *message* after *history*; return reply text and sources."""
        try:
            if self.provider == "anthropic":
                messages = [{"role": t.role, "content": t.text} for t in history]
                messages.append({"role": "user", "content": message})
                kwargs: dict[str, Any] = {}
                if web_search:
                    kwargs["tools"] = [ANTHROPIC_WEB_SEARCH_TOOL]
                response = await self._client.messages.create(
                    model=self.model, max_tokens=MAX_TOKENS,
                    system=system, messages=messages, **kwargs,
                )
                text = "".join(b.text for b in response.content if getattr(b, "type", None) == "text")
                return ChatReply(text=text, sources=anthropic_sources(response))

            if self.provider == "gemini":
                from google.genai import types
                contents = [
                    types.Content(
                        role="user" if t.role == "user" else "model",
                        parts=[types.Part.from_text(text=t.text)],
                    )
                    for t in history
                ]
                contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))
                config = types.GenerateContentConfig(
                    system_instruction=system,
                    tools=[types.Tool(google_search=types.GoogleSearch())] if web_search else None,
                )
                response = await self._client.aio.models.generate_content(
                    model=self.model, contents=contents, config=config,
                )
                return ChatReply(text=response.text or "", sources=gemini_sources(response))

            messages = [{"role": "system", "content": system}]
            messages += [{"role": t.role, "content": t.text} for t in history]
            messages.append({"role": "user", "content": message})
            kwargs = {"web_search_options": {}} if web_search else {}
            response = await self._client.chat.completions.create(
                model=self.search_model if web_search else self.model,
                max_tokens=MAX_TOKENS,
                messages=messages,
                **kwargs,
            )
            msg = response.choices[0].message
            return ChatReply(text=msg.content or "", sources=openai_sources(msg))
        except RemoteCallFailed:
            raise
        except Exception as exc:
            raise RemoteCallFailed(f"LLM API call failed: {exc}", retryable=True) from exc
