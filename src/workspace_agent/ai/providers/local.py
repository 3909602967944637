"""Local model adapter (Ollama's OpenAI-compatible endpoint).

Local models stream through :class:`AIClient`. Some of them ignore the
``tools`` parameter and write ``<tool_call>{...}</tool_call>`` blocks into
their text instead, so those are recovered when no structured calls arrive.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
import openai

from ..client import AIClient, ClientSettings
from ..orchestration.context import strip_orphan_tool_results
from ..orchestration.events import EventType
from ..orchestration.tool_call_parser import parse_text_tool_calls, strip_text_tool_calls
from ..orchestration.types import Message, PerformanceHints, SessionState, ToolCall, TurnResult
from ..tools.types import ToolSpec
from .base import EventCallback, ProviderAdapter, ProviderCapabilities, strip_provider_prefix

__all__ = ["LocalAdapter", "DEFAULT_OLLAMA_URL"]

LOGGER = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
MAX_LOCAL_TEMPERATURE = 0.7


class LocalAdapter(ProviderAdapter):
    """Chat-completions adapter for models served by Ollama."""

    id = "ollama"
    name = "Ollama (Local)"
    default_models = (
        "llama3.3:70b",
        "llama3.2:3b",
        "llama3.1:8b",
        "mistral:7b",
        "mixtral:8x7b",
        "codellama:13b",
        "deepseek-coder:6.7b",
        "qwen2.5-coder:7b",
    )
    default_hints = PerformanceHints(
        max_concurrent_tools=3,
        max_tools_per_iteration=5,
        max_output_tokens=2_000,
        reduced_parallelism=True,
        conservative_tokens=True,
    )

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_OLLAMA_URL,
        client: AIClient | None = None,
        temperature: float = MAX_LOCAL_TEMPERATURE,
        request_timeout: float | None = 120.0,
        max_retries: int = 1,
        tool_disabled_prefixes: Sequence[str] = ("gemma",),
        debug_logging: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client or AIClient(
            ClientSettings(
                base_url=f"{base_url.rstrip('/')}/v1",
                api_key="not-needed",
                model=self._models[0] if self._models else "",
                request_timeout=request_timeout,
                max_retries=max_retries,
                debug_logging=debug_logging,
            )
        )
        self._temperature = min(temperature, MAX_LOCAL_TEMPERATURE)
        self._tool_disabled_prefixes = tuple(prefix.lower() for prefix in tool_disabled_prefixes)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(vision=False, reduced_parallelism=self._hints.reduced_parallelism)

    def tools_disabled_for(self, model: str) -> bool:
        """Models matching a configured prefix reject the ``tools`` parameter."""
        name = strip_provider_prefix(model).lower()
        return any(name.startswith(prefix) for prefix in self._tool_disabled_prefixes)

    async def refresh_models(self) -> tuple[str, ...]:
        """Replace the model list with what the local server reports."""
        try:
            served = await self._client.list_models(force_refresh=True)
        except (openai.APIError, httpx.HTTPError) as exc:
            LOGGER.warning("Could not list local models: %s", exc)
            return self._models
        if served:
            self._models = tuple(served)
        return self._models

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
        model_name = strip_provider_prefix(model)
        chat_tools = None
        if tools and not self.tools_disabled_for(model_name):
            chat_tools = [tool.to_openai_tool() for tool in tools]
        elif tools:
            LOGGER.info("Tools disabled for local model %s", model_name)

        text_parts: list[str] = []
        final = None
        try:
            async for event in self._client.stream_chat(
                cleaned,
                model=model_name,
                tools=chat_tools,
                temperature=self._temperature,
                max_tokens=hints.max_output_tokens if hints.conservative_tokens else None,
            ):
                if event.type == "content.delta" and event.content:
                    text_parts.append(event.content)
                    emit(EventType.RESPONSE_CHUNK, chunk=event.content)
                elif event.type == "tool_calls.function.arguments.delta":
                    emit(EventType.TOOL_PROGRESS, tool=event.tool_name, index=event.tool_index)
                elif event.type == "completion.done":
                    final = event
        except (openai.APIError, httpx.HTTPError) as exc:
            raise self._transport_error(exc) from exc

        text = (final.content if final is not None and final.content else None) or "".join(text_parts)
        tool_calls = tuple(
            ToolCall.create(call.call_id, call.name, call.arguments, call.index)
            for call in (final.tool_calls if final is not None else ())
        )
        if not tool_calls and chat_tools and text:
            parsed = parse_text_tool_calls(text)
            if parsed:
                LOGGER.info("Recovered %d text tool call(s) from %s", len(parsed), model_name)
                tool_calls = tuple(
                    ToolCall.create(item["id"], item["name"], item["arguments"], item["index"]) for item in parsed
                )
                text = strip_text_tool_calls(text)

        return TurnResult(
            text=text,
            tool_calls=tool_calls,
            session_state=None,
            usage_tokens=final.usage_tokens if final is not None else 0,
            orphans_dropped=orphans,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
