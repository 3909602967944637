"""Token estimation utilities for AI operations."""

from __future__ import annotations

import json
import math
from typing import Any

# Average characters per token. Context ceilings are enforced against this
# estimate, never against provider-reported counts.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Estimate the number of tokens in a text string.

    Uses a fixed heuristic of ~4 characters per token, rounded up. The result
    is a bounded estimate only; callers must not rely on exact counts.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (0 for empty text).
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_content_tokens(content: Any) -> int:
    """Estimate tokens for message content that may be structured blocks."""
    if content is None:
        return 0
    if isinstance(content, str):
        return estimate_tokens(content)
    try:
        return estimate_tokens(json.dumps(content, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return estimate_tokens(str(content))


__all__ = ["CHARS_PER_TOKEN", "estimate_tokens", "estimate_content_tokens"]
