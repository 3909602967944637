"""Tool result sanitization.

Tool executors return arbitrary Python values. Before a result re-enters the
conversation it is deep-cleaned into a JSON-safe, size-bounded structure and
serialized once. Serialization never raises: unstringifiable results are
replaced by a diagnostic stand-in so the run can continue.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import json
import logging
import re
import traceback
from typing import Any, Mapping

from ..errors import SerializationError
from .context import smart_truncate

__all__ = [
    "MAX_ARRAY_ITEMS",
    "MAX_STRING_CHARS",
    "CIRCULAR_SENTINEL",
    "sanitize",
    "serialize_tool_result",
    "is_image_payload",
]

LOGGER = logging.getLogger(__name__)

MAX_ARRAY_ITEMS = 500
MAX_STRING_CHARS = 75_000
STACK_PREFIX_CHARS = 500
CIRCULAR_SENTINEL = "[Circular Reference]"
_MAX_DEPTH = 64


def is_image_payload(value: Any) -> bool:
    """Check for the ``{"type": "image", "data": <str>}`` result shape."""
    return isinstance(value, Mapping) and value.get("type") == "image" and isinstance(value.get("data"), str)


def sanitize(value: Any) -> Any:
    """Deep-clean ``value`` into JSON-safe data.

    Rules:
        * sequences over 500 items become
          ``{"_truncatedArray": True, "items": <first 500>, "originalLength": n}``;
        * exceptions become ``{"_error": True, "message", "name", "stackPrefix"}``;
        * dates/times become ISO strings and compiled regexes their pattern;
        * callables are dropped from mappings;
        * a container already on the current path becomes ``"[Circular Reference]"``;
        * mapping string values over 75000 chars are smart-truncated and flagged
          with ``<key>_truncated``;
        * image payloads keep only ``type``, ``mime_type`` and the data length.

    Args:
        value: Any tool result.

    Returns:
        A structure made of dicts, lists, strings, numbers, booleans and None.
    """
    return _clean(value, set(), 0)


def _clean(value: Any, seen: set[int], depth: int) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if value == value and value not in (float("inf"), float("-inf")) else str(value)
    if isinstance(value, BaseException):
        return _clean_exception(value)
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, re.Pattern):
        return value.pattern
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"[binary data ({len(value)} bytes)]"
    if callable(value) and not isinstance(value, type) and not hasattr(value, "to_dict"):
        return None
    if depth >= _MAX_DEPTH:
        return f"[Max depth {_MAX_DEPTH} reached]"

    marker = id(value)
    if marker in seen:
        return CIRCULAR_SENTINEL
    seen.add(marker)
    try:
        if isinstance(value, Mapping):
            return _clean_mapping(value, seen, depth)
        if isinstance(value, (list, tuple, set, frozenset)):
            return _clean_sequence(list(value), seen, depth)
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return _clean_mapping(
                {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}, seen, depth
            )
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            try:
                converted = to_dict()
            except Exception as exc:  # pragma: no cover - depends on third-party objects
                LOGGER.debug("to_dict() failed for %s: %s", type(value).__name__, exc)
            else:
                return _clean(converted, seen, depth + 1)
        return str(value)
    finally:
        seen.discard(marker)


def _clean_mapping(value: Mapping[Any, Any], seen: set[int], depth: int) -> dict[str, Any]:
    if is_image_payload(value):
        return {
            "type": "image",
            "mime_type": value.get("mime_type") or value.get("mimeType"),
            "dataOmitted": True,
            "dataLengthChars": len(value["data"]),
        }
    clean: dict[str, Any] = {}
    for raw_key, item in value.items():
        key = str(raw_key)
        if callable(item) and not isinstance(item, type) and not hasattr(item, "to_dict"):
            continue
        if isinstance(item, str) and len(item) > MAX_STRING_CHARS:
            clean[key] = smart_truncate(item, MAX_STRING_CHARS)
            clean[f"{key}_truncated"] = True
            continue
        clean[key] = _clean(item, seen, depth + 1)
    return clean


def _clean_sequence(items: list[Any], seen: set[int], depth: int) -> Any:
    cleaned = [_clean(item, seen, depth + 1) for item in items[:MAX_ARRAY_ITEMS]]
    if len(items) > MAX_ARRAY_ITEMS:
        return {"_truncatedArray": True, "items": cleaned, "originalLength": len(items)}
    return cleaned


def _clean_exception(exc: BaseException) -> dict[str, Any]:
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        "_error": True,
        "message": str(exc),
        "name": type(exc).__name__,
        "stackPrefix": stack[:STACK_PREFIX_CHARS],
    }


def serialize_tool_result(value: Any, *, tool_name: str = "") -> str:
    """Sanitize and JSON-encode a tool result for a ``tool`` message.

    Never raises. When encoding fails a diagnostic object is returned
    instead, describing the failure and the result's top-level keys.
    """
    try:
        return json.dumps(sanitize(value), ensure_ascii=False, indent=2)
    except Exception as exc:
        error = SerializationError(message=str(exc), result_type=type(value).__name__)
        LOGGER.error("Failed to serialize tool result for %s: %s", tool_name or "tool", error.message)
        keys: list[str] = []
        if isinstance(value, Mapping):
            keys = [str(key) for key in list(value.keys())[:20]]
        return json.dumps(
            {
                "error": "Failed to serialize tool result",
                "message": error.message,
                "resultType": error.result_type,
                "keys": keys,
            },
            indent=2,
        )
