"""Tests for the Anthropic messages adapter."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest

from anthropic import AsyncAnthropic

from workspace_agent.ai.errors import TransportError
from workspace_agent.ai.orchestration.types import Message, PerformanceHints
from workspace_agent.ai.providers.anthropic import AnthropicAdapter, to_anthropic_messages
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


class _FakeStreamContext:
    def __init__(self, events: Iterable[Any]):
        self._events = list(events)

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeMessages:
    def __init__(self, events: Iterable[Any] = (), error: BaseException | None = None):
        self._events = list(events)
        self._error = error
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return _FakeStreamContext(self._events)


class _FakeAnthropic:
    def __init__(self, messages: _FakeMessages):
        self.messages = messages
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _message_start(tokens: int) -> SimpleNamespace:
    return SimpleNamespace(type="message_start", message=SimpleNamespace(usage=SimpleNamespace(input_tokens=tokens)))


def _text_block(text: str) -> list[SimpleNamespace]:
    return [
        SimpleNamespace(type="content_block_start", content_block=SimpleNamespace(type="text")),
        SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=text)),
        SimpleNamespace(type="content_block_stop"),
    ]


def _tool_block(call_id: str, name: str, *fragments: str) -> list[SimpleNamespace]:
    events = [
        SimpleNamespace(
            type="content_block_start",
            content_block=SimpleNamespace(type="tool_use", id=call_id, name=name),
        )
    ]
    events += [
        SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="input_json_delta", partial_json=part))
        for part in fragments
    ]
    events.append(SimpleNamespace(type="content_block_stop"))
    return events


def _message_delta(tokens: int) -> SimpleNamespace:
    return SimpleNamespace(type="message_delta", usage=SimpleNamespace(output_tokens=tokens))


def _adapter(messages: _FakeMessages) -> tuple[AnthropicAdapter, _FakeAnthropic]:
    fake = _FakeAnthropic(messages)
    return AnthropicAdapter(client=cast(AsyncAnthropic, fake)), fake


def _transcript() -> list[Message]:
    image = {"type": "image", "mime_type": "image/png", "data": "AAAA"}
    return [
        Message.system("SYSTEM"),
        Message.user("hi"),
        Message.assistant("", tool_calls=[make_call("c1", "read_image", {"path": "a.png"})]),
        Message.tool('{"ok": true}', "c1"),
        Message.tool('{"ok": true}', "ghost"),
        Message.user(({"type": "text", "text": "Images:"}, image)),
    ]


def test_transcript_conversion_merges_tool_results_into_user_turn() -> None:
    converted = to_anthropic_messages([message for message in _transcript() if message.tool_call_id != "ghost"])

    assert [entry["role"] for entry in converted] == ["user", "assistant", "user"]
    assert converted[1]["content"] == [
        {"type": "tool_use", "id": "c1", "name": "read_image", "input": {"path": "a.png"}}
    ]
    assert [block["type"] for block in converted[2]["content"]] == ["tool_result", "text", "image"]
    assert converted[2]["content"][2]["source"] == {"type": "base64", "media_type": "image/png", "data": "AAAA"}


@pytest.mark.asyncio
async def test_request_carries_system_tools_and_drops_orphans() -> None:
    messages = _FakeMessages([_message_start(10), *_text_block("ok"), _message_delta(2)])
    adapter, _ = _adapter(messages)

    result = await adapter.run_one_turn(
        _transcript(),
        [ToolSpec(name="read_image")],
        None,
        PerformanceHints(max_output_tokens=1234),
        model="anthropic/claude-sonnet-4-5",
    )

    request = messages.calls[0]
    assert request["model"] == "claude-sonnet-4-5"
    assert request["system"] == "SYSTEM"
    assert request["max_tokens"] == 1234
    assert request["tools"][0]["name"] == "read_image"
    assert result.orphans_dropped == 1
    assert result.text == "ok"
    assert result.usage_tokens == 12
    assert result.session_state is None


@pytest.mark.asyncio
async def test_streamed_tool_use_is_assembled() -> None:
    events = [
        _message_start(100),
        *_text_block("Reading."),
        *_tool_block("toolu_1", "file_read", '{"pa', 'th": "a.py"}'),
        *_tool_block("toolu_2", "grep_search", '{"query": '),
        _message_delta(20),
    ]
    adapter, _ = _adapter(_FakeMessages(events))
    received: list[tuple[str, dict[str, Any]]] = []

    result = await adapter.run_one_turn(
        [Message.user("go")],
        [],
        None,
        PerformanceHints(),
        model="claude-sonnet-4-5",
        on_event=lambda event_type, **payload: received.append((event_type, payload)),
    )

    assert result.text == "Reading."
    assert result.usage_tokens == 120
    assert [(call.call_id, call.name, call.index) for call in result.tool_calls] == [
        ("toolu_1", "file_read", 0),
        ("toolu_2", "grep_search", 1),
    ]
    assert json.loads(result.tool_calls[0].arguments) == {"path": "a.py"}
    assert result.tool_calls[1].arguments == "{}"
    assert ("tool_preparing", {"tool": "file_read", "id": "toolu_1"}) in received
    assert ("response_chunk", {"chunk": "Reading."}) in received


@pytest.mark.asyncio
async def test_network_failure_becomes_transport_error() -> None:
    error = httpx.ConnectError("connection refused")
    adapter, _ = _adapter(_FakeMessages(error=error))

    with pytest.raises(TransportError) as excinfo:
        await adapter.run_one_turn([Message.user("go")], [], None, PerformanceHints(), model="claude-sonnet-4-5")

    assert excinfo.value.provider == "anthropic"
    assert "connection refused" in excinfo.value.message


@pytest.mark.asyncio
async def test_aclose_closes_client() -> None:
    adapter, fake = _adapter(_FakeMessages())

    await adapter.aclose()

    assert fake.closed is True
