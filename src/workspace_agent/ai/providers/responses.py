"""Responses API adapters (continuation family).

The first turn of a run sends the whole transcript. Every later turn sends
``previous_response_id`` plus only the delta items produced by the tool
batch in between, carried in :class:`SessionState`.

Two variants share the wire format: OpenAI takes the system prompt as
``instructions``; xAI rejects that field, so the prompt is sent as a
leading ``system`` input item instead.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
import openai
from openai import AsyncOpenAI

from ..orchestration.context import strip_orphan_tool_results
from ..orchestration.events import EventType
from ..orchestration.types import Message, PerformanceHints, SessionState, ToolCall, TurnResult
from ..tools.types import ToolSpec
from .base import EventCallback, ProviderAdapter, ProviderCapabilities, strip_provider_prefix, system_text

__all__ = [
    "ResponsesAdapter",
    "XAIResponsesAdapter",
    "to_responses_input",
    "build_continuation_items",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Input conversion
# -----------------------------------------------------------------------------


def _user_content(message: Message) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if block.get("type") == "text":
            parts.append({"type": "input_text", "text": str(block.get("text", ""))})
        elif block.get("type") == "image":
            parts.append(
                {
                    "type": "input_image",
                    "detail": "auto",
                    "image_url": f"data:{block.get('mime_type')};base64,{block.get('data')}",
                }
            )
    return parts


def _function_call_item(call: ToolCall) -> dict[str, Any]:
    return {
        "type": "function_call",
        "call_id": call.call_id,
        "name": call.name,
        "arguments": call.arguments or "{}",
    }


def _function_output_item(message: Message) -> dict[str, Any]:
    return {
        "type": "function_call_output",
        "call_id": message.tool_call_id,
        "output": message.text,
    }


def to_responses_input(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert a full neutral transcript into Responses ``input`` items."""
    items: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "user":
            items.append({"role": "user", "content": _user_content(message)})
        elif message.role == "assistant":
            if message.text or not message.tool_calls:
                items.append({"role": "assistant", "content": message.text})
            for call in message.tool_calls or ():
                if call.call_id and call.name:
                    items.append(_function_call_item(call))
        elif message.role == "tool" and message.tool_call_id:
            items.append(_function_output_item(message))
    return items


def build_continuation_items(
    tool_calls: Sequence[ToolCall],
    tool_messages: Sequence[Message],
    context_message: Message | None = None,
) -> tuple[dict[str, Any], ...]:
    """Delta items for the turn after a tool batch.

    All ``function_call`` items come first, then their outputs, then the
    optional image-context user message.
    """
    items = [_function_call_item(call) for call in tool_calls]
    items.extend(_function_output_item(message) for message in tool_messages if message.tool_call_id)
    if context_message is not None:
        items.append({"role": "user", "content": _user_content(context_message)})
    return tuple(items)


# -----------------------------------------------------------------------------
# Adapters
# -----------------------------------------------------------------------------


class ResponsesAdapter(ProviderAdapter):
    """Streams turns through ``AsyncOpenAI.responses.create(stream=True)``."""

    id = "openai"
    name = "OpenAI"
    supports_instructions = True
    default_models = ("gpt-5.2-codex", "gpt-5.2", "gpt-5.1", "gpt-4o", "gpt-4o-mini")
    default_hints = PerformanceHints(max_output_tokens=16_000)
    default_base_url: str | None = None

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        client: AsyncOpenAI | None = None,
        temperature: float | None = 0.1,
        request_timeout: float | None = 120.0,
        strict_tools: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or self.default_base_url,
            organization=organization,
            timeout=request_timeout,
            max_retries=0,
        )
        self._temperature = temperature
        self._strict_tools = strict_tools

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(continuation=True, reduced_parallelism=self._hints.reduced_parallelism)

    def build_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec],
        session_state: SessionState | None,
        hints: PerformanceHints,
        *,
        model: str,
    ) -> dict[str, Any]:
        """Assemble the ``responses.create`` keyword arguments for one turn."""
        system = system_text(messages)
        previous: str | None = None
        if session_state is not None and session_state.previous_turn_id and session_state.has_pending:
            previous = session_state.previous_turn_id
            items = [dict(item) for item in session_state.pending_items]
        else:
            items = to_responses_input(messages)
        if not self.supports_instructions and system and (not items or items[0].get("role") != "system"):
            items.insert(0, {"role": "system", "content": system})

        request: dict[str, Any] = {
            "model": strip_provider_prefix(model),
            "input": items,
            "truncation": "auto",
            "max_output_tokens": hints.max_output_tokens,
            "stream": True,
        }
        if self.supports_instructions and system:
            request["instructions"] = system
        if tools:
            request["tools"] = [tool.to_responses_tool(strict=self._strict_tools) for tool in tools]
            request["tool_choice"] = "auto"
            request["parallel_tool_calls"] = True
        if self._temperature is not None:
            request["temperature"] = self._temperature
        if previous is not None:
            request["previous_response_id"] = previous
        return request

    async def run_one_turn(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec],
        session_state: SessionState | None,
        hints: PerformanceHints,
        *,
        model: str,
        on_event: EventCallback | None = None,
    ) -> TurnResult:
        emit = self._emitter(on_event)
        cleaned, orphans = strip_orphan_tool_results(messages)
        request = self.build_request(cleaned, tools, session_state, hints, model=model)
        LOGGER.debug(
            "Calling %s responses model=%s with %d input item(s), previous=%s",
            self.id,
            request["model"],
            len(request["input"]),
            request.get("previous_response_id"),
        )

        text_parts: list[str] = []
        reasoning = ""
        response_id: str | None = None
        usage_tokens = 0
        calls: dict[str, Any] = {}
        try:
            stream = await self._client.responses.create(**request)
            async for event in stream:
                event_type = getattr(event, "type", "")
                response = getattr(event, "response", None)
                if response is not None and getattr(response, "id", None):
                    response_id = response.id

                if event_type == "response.output_item.added":
                    item = event.item
                    if getattr(item, "type", None) == "function_call":
                        emit(EventType.TOOL_PREPARING, tool=item.name, id=item.call_id)
                elif event_type == "response.output_item.done":
                    item = event.item
                    if getattr(item, "type", None) == "function_call":
                        calls[item.call_id] = item
                elif event_type == "response.output_text.delta":
                    if event.delta:
                        text_parts.append(event.delta)
                        emit(EventType.RESPONSE_CHUNK, chunk=event.delta)
                elif event_type == "response.reasoning_summary_text.delta":
                    reasoning += event.delta or ""
                elif event_type == "response.reasoning_summary_text.done":
                    reasoning = event.text or reasoning
                elif event_type == "response.completed":
                    usage_tokens += self._usage_total(getattr(response, "usage", None))
                    for item in getattr(response, "output", None) or ():
                        if getattr(item, "type", None) == "function_call" and item.call_id not in calls:
                            calls[item.call_id] = item
        except (openai.APIError, httpx.HTTPError) as exc:
            raise self._transport_error(exc) from exc

        text = "".join(text_parts)
        if not text and reasoning:
            text = reasoning
            emit(EventType.RESPONSE_CHUNK, chunk=reasoning)

        tool_calls = tuple(
            ToolCall.create(item.call_id, item.name, item.arguments, index)
            for index, item in enumerate(calls.values())
        )
        if response_id is None:
            LOGGER.warning("%s stream ended without a response id; next turn resends the transcript", self.id)
        return TurnResult(
            text=text,
            tool_calls=tool_calls,
            session_state=SessionState(previous_turn_id=response_id),
            usage_tokens=usage_tokens,
            orphans_dropped=orphans,
        )

    def continue_session(
        self,
        session_state: SessionState | None,
        tool_calls: Sequence[ToolCall],
        tool_messages: Sequence[Message],
        context_message: Message | None = None,
    ) -> SessionState | None:
        previous = session_state.previous_turn_id if session_state else None
        if previous is None:
            return None
        return SessionState(
            previous_turn_id=previous,
            pending_items=build_continuation_items(tool_calls, tool_messages, context_message),
        )

    @staticmethod
    def _usage_total(usage: Any) -> int:
        if usage is None:
            return 0
        total = getattr(usage, "total_tokens", None)
        if total is None:
            total = int(getattr(usage, "input_tokens", 0) or 0) + int(getattr(usage, "output_tokens", 0) or 0)
        return int(total or 0)

    async def aclose(self) -> None:
        await self._client.close()


class XAIResponsesAdapter(ResponsesAdapter):
    """xAI (Grok) variant: no ``instructions`` field."""

    id = "xai"
    name = "xAI (Grok)"
    supports_instructions = False
    default_models = ("grok-code-fast-1", "grok-2", "grok-beta")
    default_hints = PerformanceHints(max_concurrent_tools=8, max_tools_per_iteration=10, max_output_tokens=8_000)
    default_base_url = "https://api.x.ai/v1"

    def __init__(self, *, temperature: float | None = 0.2, **kwargs: Any) -> None:
        super().__init__(temperature=temperature, **kwargs)

