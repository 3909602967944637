"""Tests for the error taxonomy."""

from __future__ import annotations

import json
import logging

import pytest

from workspace_agent.ai.errors import (
    AgentError,
    ArgumentParseError,
    ErrorKind,
    IterationBudgetExceeded,
    OrphanResultError,
    RunCancelled,
    SerializationError,
    ToolExecutionError,
    TransportError,
)
from workspace_agent.ai.orchestration.sanitizer import serialize_tool_result


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (TransportError(message="down"), ErrorKind.TRANSPORT),
        (ArgumentParseError(message="bad"), ErrorKind.ARGUMENT_PARSE),
        (ToolExecutionError(message="boom"), ErrorKind.TOOL_EXECUTION),
        (OrphanResultError(message="orphan"), ErrorKind.ORPHAN_RESULT),
        (SerializationError(message="enc"), ErrorKind.SERIALIZATION),
        (IterationBudgetExceeded(message="cap"), ErrorKind.ITERATION_BUDGET),
        (RunCancelled(message="stop"), ErrorKind.CANCELLED),
        (AgentError(message="oops"), ErrorKind.INTERNAL),
    ],
)
def test_every_error_has_a_kind(error: AgentError, kind: str) -> None:
    assert isinstance(error, AgentError)
    assert isinstance(error, Exception)
    assert error.kind == kind
    assert str(error) == error.message


def test_transport_error_serializes_provider_and_status() -> None:
    error = TransportError(message="Anthropic API error: 529", provider="anthropic", status_code=529)

    assert error.to_dict() == {
        "kind": "transport",
        "message": "Anthropic API error: 529",
        "provider": "anthropic",
        "status_code": 529,
    }


def test_details_are_included_when_present() -> None:
    error = AgentError(message="Internal error: x", details={"exception": "KeyError"})

    assert error.to_dict()["details"] == {"exception": "KeyError"}
    assert "details" not in RunCancelled(message="stop").to_dict()


def test_errors_can_be_raised_and_caught() -> None:
    with pytest.raises(AgentError) as excinfo:
        raise IterationBudgetExceeded(message="Max iterations (75) reached", max_iterations=75)

    assert excinfo.value.max_iterations == 75


def test_unserializable_result_becomes_diagnostic(caplog: pytest.LogCaptureFixture) -> None:
    class _Exploding(dict):
        def items(self):
            raise RuntimeError("cannot iterate")

    with caplog.at_level(logging.ERROR):
        text = serialize_tool_result(_Exploding(a=1), tool_name="file_read")

    payload = json.loads(text)
    assert payload["error"] == "Failed to serialize tool result"
    assert payload["resultType"] == "_Exploding"
    assert "Failed to serialize tool result for file_read" in caplog.text
