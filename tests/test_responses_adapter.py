"""Tests for the Responses API adapters (OpenAI and xAI)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest

from openai import AsyncOpenAI

from workspace_agent.ai.errors import TransportError
from workspace_agent.ai.orchestration.types import IMAGE_CONTEXT_TAG, Message, PerformanceHints, SessionState
from workspace_agent.ai.providers.responses import (
    ResponsesAdapter,
    XAIResponsesAdapter,
    build_continuation_items,
    to_responses_input,
)
from workspace_agent.ai.tools.types import ToolSpec

from helpers import make_call


class _FakeStream:
    def __init__(self, events: Iterable[Any]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._iterator)
        except StopIteration as exc:  # pragma: no cover - exhaust iterator
            raise StopAsyncIteration from exc


class _FakeResponses:
    def __init__(self, *scripts: Iterable[Any], error: BaseException | None = None):
        self._scripts = [list(script) for script in scripts]
        self._error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> _FakeStream:
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return _FakeStream(self._scripts.pop(0) if self._scripts else [])


def _client(responses: _FakeResponses) -> AsyncOpenAI:
    return cast(AsyncOpenAI, SimpleNamespace(responses=responses))


def _function_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(type="function_call", call_id=call_id, name=name, arguments=arguments)


def _tool_turn_events(response_id: str, *calls: SimpleNamespace, total: int = 50) -> list[SimpleNamespace]:
    events: list[SimpleNamespace] = [
        SimpleNamespace(type="response.created", response=SimpleNamespace(id=response_id)),
    ]
    for call in calls:
        events.append(SimpleNamespace(type="response.output_item.added", item=call))
        events.append(SimpleNamespace(type="response.output_item.done", item=call))
    events.append(
        SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(id=response_id, usage=SimpleNamespace(total_tokens=total), output=list(calls)),
        )
    )
    return events


def _text_turn_events(response_id: str, *chunks: str) -> list[SimpleNamespace]:
    events = [SimpleNamespace(type="response.output_text.delta", delta=chunk) for chunk in chunks]
    events.append(
        SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(id=response_id, usage=SimpleNamespace(input_tokens=7, output_tokens=3), output=[]),
        )
    )
    return events


def _first_turn() -> list[Message]:
    return [Message.system("SYSTEM"), Message.user("list the files")]


def test_full_transcript_conversion() -> None:
    image = {"type": "image", "mime_type": "image/png", "data": "AAAA"}
    messages = [
        Message.system("SYSTEM"),
        Message.user("hi"),
        Message.assistant("Looking.", tool_calls=[make_call("c1", "list_directory")]),
        Message.tool('{"files": []}', "c1"),
        Message.user(({"type": "text", "text": "Images:"}, image)),
        Message.assistant("done"),
    ]

    items = to_responses_input(messages)

    assert items[0] == {"role": "user", "content": "hi"}
    assert items[1] == {"role": "assistant", "content": "Looking."}
    assert items[2]["type"] == "function_call"
    assert items[3] == {"type": "function_call_output", "call_id": "c1", "output": '{"files": []}'}
    assert items[4]["content"][1] == {"type": "input_image", "detail": "auto", "image_url": "data:image/png;base64,AAAA"}
    assert items[5] == {"role": "assistant", "content": "done"}


def test_continuation_items_put_calls_before_outputs() -> None:
    calls = [make_call("c1", "file_read", {"path": "a"}), make_call("c2", "file_read", {"path": "b"}, index=1)]
    outputs = [Message.tool("A", "c1"), Message.tool("B", "c2")]
    context = Message(role="user", content="Images:", ephemeral=IMAGE_CONTEXT_TAG, epoch=1)

    items = build_continuation_items(calls, outputs, context)

    assert [item.get("type", item.get("role")) for item in items] == [
        "function_call",
        "function_call",
        "function_call_output",
        "function_call_output",
        "user",
    ]


@pytest.mark.asyncio
async def test_first_turn_sends_transcript_instructions_and_strict_tools() -> None:
    responses = _FakeResponses(_tool_turn_events("resp_1", _function_call("call_a", "list_directory", '{"path": "."}')))
    adapter = ResponsesAdapter(client=_client(responses))
    received: list[str] = []

    result = await adapter.run_one_turn(
        _first_turn(),
        [ToolSpec(name="list_directory")],
        None,
        PerformanceHints(),
        model="openai/gpt-5.2",
        on_event=lambda event_type, **payload: received.append(event_type),
    )

    request = responses.calls[0]
    assert request["model"] == "gpt-5.2"
    assert request["instructions"] == "SYSTEM"
    assert request["input"] == [{"role": "user", "content": "list the files"}]
    assert request["tools"][0]["strict"] is True
    assert request["tool_choice"] == "auto"
    assert request["parallel_tool_calls"] is True
    assert request["truncation"] == "auto"
    assert request["stream"] is True
    assert "previous_response_id" not in request

    assert result.session_state == SessionState(previous_turn_id="resp_1")
    assert [(call.call_id, call.name) for call in result.tool_calls] == [("call_a", "list_directory")]
    assert json.loads(result.tool_calls[0].arguments) == {"path": "."}
    assert result.usage_tokens == 50
    assert received == ["tool_preparing"]


@pytest.mark.asyncio
async def test_second_turn_sends_only_pending_items_with_previous_id() -> None:
    call = _function_call("call_a", "list_directory", "{}")
    responses = _FakeResponses(_tool_turn_events("resp_1", call), _text_turn_events("resp_2", "Two ", "files."))
    adapter = ResponsesAdapter(client=_client(responses), strict_tools=False)
    tools = [ToolSpec(name="list_directory")]

    first = await adapter.run_one_turn(_first_turn(), tools, None, PerformanceHints(), model="gpt-5.2")
    tool_message = Message.tool('{"files": ["a", "b"]}', "call_a")
    state = adapter.continue_session(first.session_state, first.tool_calls, [tool_message])
    transcript = [*_first_turn(), first.to_message(), tool_message]
    second = await adapter.run_one_turn(transcript, tools, state, PerformanceHints(), model="gpt-5.2")

    request = responses.calls[1]
    assert request["previous_response_id"] == "resp_1"
    assert [item["type"] for item in request["input"]] == ["function_call", "function_call_output"]
    assert request["tools"][0]["strict"] is False
    assert second.text == "Two files."
    assert second.usage_tokens == 10
    assert second.session_state == SessionState(previous_turn_id="resp_2")


def test_continue_session_without_previous_id_resends_transcript() -> None:
    adapter = ResponsesAdapter(client=_client(_FakeResponses()))

    assert adapter.continue_session(None, [], []) is None
    assert adapter.continue_session(SessionState(), [], []) is None


def test_state_without_pending_items_sends_full_transcript() -> None:
    adapter = ResponsesAdapter(client=_client(_FakeResponses()), temperature=None)

    request = adapter.build_request(
        _first_turn(), [], SessionState(previous_turn_id="resp_1"), PerformanceHints(), model="gpt-5.2"
    )

    assert "previous_response_id" not in request
    assert "temperature" not in request
    assert "tools" not in request
    assert request["input"] == [{"role": "user", "content": "list the files"}]


@pytest.mark.asyncio
async def test_xai_sends_system_item_on_every_turn() -> None:
    call = _function_call("call_a", "file_read", "{}")
    responses = _FakeResponses(_tool_turn_events("resp_1", call), _text_turn_events("resp_2", "ok"))
    adapter = XAIResponsesAdapter(client=_client(responses))

    first = await adapter.run_one_turn(_first_turn(), [], None, PerformanceHints(), model="grok-code-fast-1")
    state = adapter.continue_session(first.session_state, first.tool_calls, [Message.tool("{}", "call_a")])
    await adapter.run_one_turn(_first_turn(), [], state, PerformanceHints(), model="grok-code-fast-1")

    for request in responses.calls:
        assert "instructions" not in request
        assert request["input"][0] == {"role": "system", "content": "SYSTEM"}
        assert request["temperature"] == 0.2
    assert responses.calls[1]["previous_response_id"] == "resp_1"


@pytest.mark.asyncio
async def test_reasoning_summary_is_used_when_no_text() -> None:
    events = [
        SimpleNamespace(type="response.reasoning_summary_text.delta", delta="Thinking about "),
        SimpleNamespace(type="response.reasoning_summary_text.done", text="Thinking about it."),
        SimpleNamespace(type="response.completed", response=SimpleNamespace(id="resp_9", usage=None, output=[])),
    ]
    adapter = ResponsesAdapter(client=_client(_FakeResponses(events)))
    chunks: list[str] = []

    result = await adapter.run_one_turn(
        _first_turn(),
        [],
        None,
        PerformanceHints(),
        model="gpt-5.2",
        on_event=lambda event_type, **payload: chunks.append(payload.get("chunk")),
    )

    assert result.text == "Thinking about it."
    assert chunks == ["Thinking about it."]
    assert result.usage_tokens == 0


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped() -> None:
    adapter = XAIResponsesAdapter(client=_client(_FakeResponses(error=httpx.ReadTimeout("timed out"))))

    with pytest.raises(TransportError) as excinfo:
        await adapter.run_one_turn(_first_turn(), [], None, PerformanceHints(), model="grok-2")

    assert excinfo.value.provider == "xai"


@pytest.mark.asyncio
async def test_repeated_output_item_replaces_earlier_call() -> None:
    events = [
        SimpleNamespace(type="response.created", response=SimpleNamespace(id="resp_3")),
        SimpleNamespace(type="response.output_item.done", item=_function_call("call_a", "file_read", '{"path": "a"}')),
        SimpleNamespace(type="response.output_item.done", item=_function_call("call_a", "file_read", '{"path": "b"}')),
        SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(
                id="resp_3",
                usage=None,
                output=[
                    _function_call("call_a", "file_read", '{"path": "stale"}'),
                    _function_call("call_b", "grep_search", '{"query": "x"}'),
                ],
            ),
        ),
    ]
    adapter = ResponsesAdapter(client=_client(_FakeResponses(events)))

    result = await adapter.run_one_turn(_first_turn(), [], None, PerformanceHints(), model="gpt-5.2")

    assert [(call.call_id, call.name, call.index) for call in result.tool_calls] == [
        ("call_a", "file_read", 0),
        ("call_b", "grep_search", 1),
    ]
    assert json.loads(result.tool_calls[0].arguments) == {"path": "b"}
    assert json.loads(result.tool_calls[1].arguments) == {"query": "x"}
