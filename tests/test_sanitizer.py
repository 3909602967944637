"""Tests for tool result sanitization."""

from __future__ import annotations

import datetime as _dt
import json
import re
from dataclasses import dataclass

from workspace_agent.ai.orchestration.sanitizer import (
    CIRCULAR_SENTINEL,
    sanitize,
    serialize_tool_result,
)


@dataclass
class _Point:
    x: int
    y: int


class _Unserializable:
    def to_dict(self):
        return {"kind": "custom", "when": _dt.date(2024, 5, 1)}


def test_large_array_is_truncated_with_original_length() -> None:
    result = sanitize(list(range(10_000)))

    assert result["_truncatedArray"] is True
    assert result["originalLength"] == 10_000
    assert result["items"] == list(range(500))


def test_cycle_is_replaced_with_sentinel() -> None:
    node: dict = {"name": "root"}
    node["self"] = node
    items: list = [1]
    items.append(items)

    assert sanitize(node) == {"name": "root", "self": CIRCULAR_SENTINEL}
    assert sanitize(items) == [1, CIRCULAR_SENTINEL]


def test_shared_references_are_not_cycles() -> None:
    shared = [1, 2]

    assert sanitize({"a": shared, "b": shared}) == {"a": [1, 2], "b": [1, 2]}


def test_exception_is_reduced_to_message_name_and_stack() -> None:
    try:
        raise ValueError("nope")
    except ValueError as exc:
        result = sanitize({"error": exc})["error"]

    assert result["_error"] is True
    assert result["message"] == "nope"
    assert result["name"] == "ValueError"
    assert len(result["stackPrefix"]) <= 500


def test_scalars_and_objects_are_json_safe() -> None:
    value = {
        "when": _dt.datetime(2024, 1, 2, 3, 4, 5),
        "pattern": re.compile(r"\d+"),
        "callback": lambda: None,
        "tags": {"a"},
        "point": _Point(1, 2),
        "custom": _Unserializable(),
        "blob": b"\x00\x01",
    }

    result = sanitize(value)

    assert result == {
        "when": "2024-01-02T03:04:05",
        "pattern": r"\d+",
        "tags": ["a"],
        "point": {"x": 1, "y": 2},
        "custom": {"kind": "custom", "when": "2024-05-01"},
        "blob": "[binary data (2 bytes)]",
    }


def test_long_strings_are_truncated_and_flagged() -> None:
    result = sanitize({"content": "c" * 80_000, "short": "ok"})

    assert result["content_truncated"] is True
    assert len(result["content"]) <= 75_000
    assert result["short"] == "ok"
    assert "short_truncated" not in result


def test_image_payload_data_is_omitted() -> None:
    result = sanitize({"type": "image", "mimeType": "image/png", "data": "x" * 1234, "path": "a.png"})

    assert result == {"type": "image", "mime_type": "image/png", "dataOmitted": True, "dataLengthChars": 1234}


def test_serialize_tool_result_produces_json() -> None:
    text = serialize_tool_result({"files": ("a", "b"), "count": 2}, tool_name="list_directory")

    assert json.loads(text) == {"files": ["a", "b"], "count": 2}


def test_serialize_tool_result_handles_plain_values() -> None:
    assert json.loads(serialize_tool_result("done")) == "done"
    assert json.loads(serialize_tool_result(None)) is None
    assert json.loads(serialize_tool_result(float("nan"))) == "nan"
