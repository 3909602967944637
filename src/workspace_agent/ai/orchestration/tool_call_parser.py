"""Tool call parsing utilities.

Two concerns live here:

* best-effort parsing of streamed argument strings, where malformed JSON is
  repaired to ``{}`` instead of failing the run;
* recovery of tool calls that local models write into plain text, either as
  ``<tool_call>{...}</tool_call>`` blocks or as
  ``<|tool_call_begin|>name<|tool_sep|>{...}<|tool_call_end|>`` markers.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any

from ..errors import ArgumentParseError

__all__ = [
    "XML_TOOL_CALL_RE",
    "TOOL_CALLS_BLOCK_RE",
    "TOOL_CALL_ENTRY_RE",
    "parse_arguments",
    "try_parse_json_block",
    "parse_xml_tool_calls",
    "parse_embedded_tool_calls",
    "parse_text_tool_calls",
    "strip_text_tool_calls",
    "parsed_tool_call_id",
]

LOGGER = logging.getLogger(__name__)

XML_TOOL_CALL_RE = re.compile(r"<tool_call>\s*(?P<body>\{.*?\})\s*</tool_call>", re.DOTALL)

# Full-width and box-drawing variants some models emit inside <|...|> markers.
_MARKER_TRANSLATION = str.maketrans(
    {
        ord("＜"): "<",
        ord("〈"): "<",
        ord("＞"): ">",
        ord("〉"): ">",
        ord("｜"): "|",
        ord("│"): "|",
        ord("▁"): "_",
        ord("\u00a0"): " ",
        ord("\u200b"): " ",
        ord("\u3000"): " ",
        ord("\ufeff"): " ",
    }
)

TOOL_CALLS_BLOCK_RE = re.compile(
    r"<\s*\|?\s*tool[\s_]*calls[\s_]*begin\s*\|?\s*>(?P<body>.*?)<\s*\|?\s*tool[\s_]*calls[\s_]*end\s*\|?\s*>",
    re.IGNORECASE | re.DOTALL,
)

TOOL_CALL_ENTRY_RE = re.compile(
    r"<\s*\|?\s*tool[\s_]*call[\s_]*begin\s*\|?\s*>(?P<name>.*?)<\s*\|?\s*tool[\s_]*sep\s*\|?\s*>(?P<args>.*?)<\s*\|?\s*tool[\s_]*call[\s_]*end\s*\|?\s*>",
    re.IGNORECASE | re.DOTALL,
)


# -----------------------------------------------------------------------------
# Argument Parsing
# -----------------------------------------------------------------------------


def parse_arguments(raw: str | None, *, tool_name: str = "") -> dict[str, Any]:
    """Parse a tool-call argument string, degrading to ``{}`` on failure.

    Args:
        raw: JSON text produced by the model (possibly empty or truncated).
        tool_name: Tool name, for logging only.

    Returns:
        The parsed object, or an empty dict when the text is not a JSON object.
    """
    if raw is None:
        return {}
    text = raw.strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        error = ArgumentParseError(
            message=f"Invalid tool arguments for {tool_name or 'unknown'}: {exc}",
            raw_arguments=text[:200],
        )
        LOGGER.warning("%s; using empty arguments. Raw: %s", error.message, error.raw_arguments)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning(
            "Tool arguments for %s decoded to %s, expected an object",
            tool_name or "unknown",
            type(parsed).__name__,
        )
        return {}
    return parsed


def try_parse_json_block(text: str) -> dict[str, Any] | None:
    """Attempt to parse text as a JSON object, returning None on failure."""
    if not text:
        return None
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def parsed_tool_call_id(name: str, index: int) -> str:
    """Generate a unique tool call ID for calls recovered from text."""
    return f"call_text_{name or 'tool'}_{index}_{uuid.uuid4().hex[:8]}"


# -----------------------------------------------------------------------------
# Text Tool Calls
# -----------------------------------------------------------------------------


def parse_xml_tool_calls(text: str, start_index: int = 0) -> list[dict[str, Any]]:
    """Extract ``<tool_call>{"name": ..., "arguments": ...}</tool_call>`` blocks.

    Blocks whose body is not valid JSON or lacks ``name``/``arguments`` are
    skipped with a warning.

    Returns:
        List of dicts with keys ``id``, ``name``, ``arguments`` (JSON text) and ``index``.
    """
    if not text or not isinstance(text, str):
        return []
    calls: list[dict[str, Any]] = []
    for match in XML_TOOL_CALL_RE.finditer(text):
        body = match.group("body").strip()
        parsed = try_parse_json_block(body)
        if parsed is None or not parsed.get("name") or "arguments" not in parsed:
            LOGGER.warning("Skipping malformed <tool_call> block: %.200s", body)
            continue
        arguments = parsed["arguments"]
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        index = start_index + len(calls)
        name = str(parsed["name"])
        calls.append(
            {
                "id": parsed_tool_call_id(name, index),
                "name": name,
                "arguments": arguments,
                "index": index,
            }
        )
    return calls


def parse_embedded_tool_calls(text: str, start_index: int = 0) -> list[dict[str, Any]]:
    """Extract calls wrapped in ``<|tool_calls_begin|>...<|tool_calls_end|>`` markers."""
    if not text or not isinstance(text, str):
        return []
    normalized = text.translate(_MARKER_TRANSLATION)
    block = TOOL_CALLS_BLOCK_RE.search(normalized)
    if not block:
        return []
    calls: list[dict[str, Any]] = []
    for entry in TOOL_CALL_ENTRY_RE.finditer(block.group("body") or ""):
        name = (entry.group("name") or "").strip().strip("\"' \t\n\r")
        if not name:
            continue
        index = start_index + len(calls)
        calls.append(
            {
                "id": parsed_tool_call_id(name, index),
                "name": name,
                "arguments": (entry.group("args") or "").strip() or "{}",
                "index": index,
            }
        )
    return calls


def parse_text_tool_calls(text: str, start_index: int = 0) -> list[dict[str, Any]]:
    """Recover tool calls from assistant text using every supported framing."""
    calls = parse_xml_tool_calls(text, start_index)
    if calls:
        return calls
    return parse_embedded_tool_calls(text, start_index)


def strip_text_tool_calls(text: str) -> str:
    """Remove recovered tool-call framing so it is not echoed as prose."""
    if not text:
        return text
    cleaned = XML_TOOL_CALL_RE.sub("", text)
    cleaned = TOOL_CALLS_BLOCK_RE.sub("", cleaned.translate(_MARKER_TRANSLATION))
    return cleaned.strip()
