"""Token estimation and snippet budgeting for enhanced questions.

Tokens are estimated at four characters each; no tokenizer is loaded.
"""

from __future__ import annotations

import copy
import math
from typing import Any

from codeground.db.models import SearchHit

CHARS_PER_TOKEN = 4
MIN_TRUNCATED_TOKENS = 100
TRUNCATION_MARKER = "\n// ... (truncated for length)"


def estimate_tokens(text: str | None) -> int:
    """Approximate token count of *text*: ``ceil(len / 4)``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_snippet(index: int, payload: dict[str, Any]) -> str:
    """Render one snippet as it appears in the enhanced question.

    ``Lines:`` is omitted when the payload carries no line range.
    """
    parts = [
        f"[{index}] {str(payload.get('type', '')).upper()}: {payload.get('name', '')}\n",
        f"File: {payload.get('path', '')}\n",
    ]
    if payload.get("startLine") and payload.get("endLine"):
        parts.append(f"Lines: {payload['startLine']}-{payload['endLine']}\n")
    parts.append("```\n")
    parts.append(str(payload.get("content", "")))
    parts.append("\n```\n\n")
    return "".join(parts)


def snippet_tokens(hit: SearchHit, index: int = 1) -> int:
    return estimate_tokens(format_snippet(index, hit.payload))


def limit_snippets_to_token_budget(hits: list[SearchHit], available_tokens: int) -> list[SearchHit]:
    """Keep whole snippets, best first, while they fit in *available_tokens*.

    If not even the first snippet fits, a copy of it is returned with its
    content cut to ``max(100, available_tokens)`` tokens, the truncation
    marker appended and ``payload["isTruncated"]`` set.
    """
    kept: list[SearchHit] = []
    remaining = available_tokens
    for position, hit in enumerate(hits, start=1):
        cost = snippet_tokens(hit, position)
        if cost <= remaining:
            kept.append(hit)
            remaining -= cost
            continue
        if not kept:
            kept.append(_truncate(hit, max(MIN_TRUNCATED_TOKENS, remaining)))
        break
    return kept


def _truncate(hit: SearchHit, tokens: int) -> SearchHit:
    payload = copy.deepcopy(hit.payload)
    payload["content"] = str(payload.get("content", ""))[: tokens * CHARS_PER_TOKEN] + TRUNCATION_MARKER
    payload["isTruncated"] = True
    return SearchHit(id=hit.id, score=hit.score, payload=payload)
