"""Anthropic messages adapter (stateless streaming family).

The full transcript is sent on every turn. Tool calls arrive as streamed
``tool_use`` content blocks whose JSON input is assembled from
``input_json_delta`` fragments and validated when the block closes.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Sequence

import anthropic
import httpx
from anthropic import AsyncAnthropic

from ..orchestration.context import strip_orphan_tool_results
from ..orchestration.events import EventType
from ..orchestration.types import Message, PerformanceHints, SessionState, ToolCall, TurnResult
from ..tools.types import ToolSpec
from .base import EventCallback, ProviderAdapter, strip_provider_prefix, system_text

__all__ = ["AnthropicAdapter", "to_anthropic_messages"]

LOGGER = logging.getLogger(__name__)

TOOL_PROGRESS_INTERVAL = 0.2


def _content_blocks(content: str | tuple[Mapping[str, Any], ...]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    blocks: list[dict[str, Any]] = []
    for block in content:
        if block.get("type") == "image":
            blocks.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": block.get("mime_type") or "image/png",
                        "data": block.get("data") or "",
                    },
                }
            )
        elif block.get("type") == "text" and block.get("text"):
            blocks.append({"type": "text", "text": str(block["text"])})
    return blocks


def to_anthropic_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert a neutral transcript into Anthropic ``messages``.

    System messages are skipped (they travel in ``system``). Tool results
    become ``tool_result`` blocks in a user message, and consecutive
    messages of the same role are merged so results share one user turn.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            role = "user"
            blocks = [
                {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.text,
                }
            ]
        elif message.role == "assistant":
            role = "assistant"
            blocks = _content_blocks(message.text)
            for call in message.tool_calls or ():
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.call_id,
                        "name": call.name,
                        "input": dict(call.parsed_arguments),
                    }
                )
        else:
            role = "user"
            blocks = _content_blocks(message.content)
        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})
    return converted


class AnthropicAdapter(ProviderAdapter):
    """Streams turns through ``AsyncAnthropic.messages.stream``."""

    id = "anthropic"
    name = "Anthropic"
    default_models = (
        "claude-opus-4-6",
        "claude-sonnet-4-6",
        "claude-opus-4-5",
        "claude-sonnet-4-5",
    )
    default_hints = PerformanceHints(max_output_tokens=8_000)

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncAnthropic | None = None,
        temperature: float = 0.1,
        request_timeout: float | None = 120.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client or AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=request_timeout,
            max_retries=0,
        )
        self._temperature = temperature

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
        request: dict[str, Any] = {
            "model": strip_provider_prefix(model),
            "max_tokens": hints.max_output_tokens,
            "temperature": self._temperature,
            "messages": to_anthropic_messages(cleaned),
        }
        system = system_text(cleaned)
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [tool.to_anthropic_tool() for tool in tools]
        LOGGER.debug(
            "Calling Anthropic model=%s with %d message(s), %d tool(s)",
            request["model"],
            len(request["messages"]),
            len(tools),
        )

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        usage_tokens = 0
        current: dict[str, Any] | None = None
        last_progress = 0.0
        try:
            async with self._client.messages.stream(**request) as stream:
                async for event in stream:
                    event_type = getattr(event, "type", None)
                    if event_type == "message_start":
                        usage = getattr(event.message, "usage", None)
                        usage_tokens += int(getattr(usage, "input_tokens", 0) or 0)
                    elif event_type == "content_block_start":
                        block = event.content_block
                        if getattr(block, "type", None) == "tool_use":
                            current = {"id": block.id, "name": block.name, "input": ""}
                            emit(EventType.TOOL_PREPARING, tool=block.name, id=block.id)
                    elif event_type == "content_block_delta":
                        delta = event.delta
                        delta_type = getattr(delta, "type", None)
                        if delta_type == "text_delta":
                            text_parts.append(delta.text)
                            emit(EventType.RESPONSE_CHUNK, chunk=delta.text)
                        elif delta_type == "input_json_delta" and current is not None:
                            current["input"] += delta.partial_json
                            now = time.monotonic()
                            if now - last_progress > TOOL_PROGRESS_INTERVAL:
                                last_progress = now
                                emit(
                                    EventType.TOOL_PROGRESS,
                                    tool=current["name"],
                                    id=current["id"],
                                    bytes=len(current["input"]),
                                )
                    elif event_type == "content_block_stop":
                        if current is not None:
                            tool_calls.append(self._finish_tool_use(current, len(tool_calls)))
                            current = None
                    elif event_type == "message_delta":
                        usage = getattr(event, "usage", None)
                        usage_tokens += int(getattr(usage, "output_tokens", 0) or 0)
        except (anthropic.APIError, httpx.HTTPError) as exc:
            raise self._transport_error(exc) from exc

        return TurnResult(
            text="".join(text_parts),
            tool_calls=tuple(tool_calls),
            session_state=None,
            usage_tokens=usage_tokens,
            orphans_dropped=orphans,
        )

    def _finish_tool_use(self, block: Mapping[str, Any], index: int) -> ToolCall:
        raw = block["input"] or "{}"
        try:
            json.loads(raw)
        except ValueError as exc:
            LOGGER.error("Invalid tool input JSON for %s: %s", block["name"], exc)
            LOGGER.debug("Accumulated input (first 200 chars): %s", raw[:200])
            raw = "{}"
        return ToolCall.create(block["id"], block["name"], raw, index)

    async def aclose(self) -> None:
        await self._client.close()
