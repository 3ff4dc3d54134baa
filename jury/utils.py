"""Shared utility functions used across Jury modules."""
from __future__ import annotations

import re
import time

_FENCE_RE = re.compile(r'```(?:json)?\s*(\{.*\})\s*```', re.DOTALL)


def excerpt(text: str, limit: int) -> str:
    """Return the first *limit* characters of *text*, marking truncation with ``...``."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def strip_code_fence(text: str) -> str:
    """Unwrap a JSON object the model wrapped in a markdown code fence."""
    text = text.strip()
    m = _FENCE_RE.search(text)
    return m.group(1) if m else text


def now_ms() -> int:
    return int(time.time() * 1000)
