"""Streaming chat-completions client for OpenAI-compatible servers.

The local (Ollama) adapter drives every turn through :class:`AIClient`.
Hosts can also use it on its own for a single streamed completion outside
the iteration engine.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..utils.logging import log_payload
from .orchestration.types import Message
from .utils.tokens import estimate_tokens

__all__ = ["ClientSettings", "AIStreamEvent", "StreamedToolCall", "AIClient"]

LOGGER = logging.getLogger(__name__)

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)

_TOOL_ARGUMENT_EVENTS = frozenset(
    {"tool_calls.function.arguments.delta", "tool_calls.function.arguments.done"}
)


@dataclass(slots=True)
class ClientSettings:
    """Endpoint configuration for :class:`AIClient`.

    ``max_retries`` is the total number of attempts. With the default of 1
    a transport failure reaches the caller on the first error.
    """

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 120.0
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True, frozen=True)
class StreamedToolCall:
    """A tool call read from the assembled completion."""

    call_id: str
    name: str
    arguments: str
    index: int = 0


@dataclass(slots=True)
class AIStreamEvent:
    """One normalized item of a chat stream.

    ``type`` keeps the SDK's stream event name. The stream always finishes
    with a ``completion.done`` item holding the final text, the complete
    tool calls and the total usage.
    """

    type: str
    content: str | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    arguments_delta: str | None = None
    tool_calls: tuple[StreamedToolCall, ...] = field(default_factory=tuple)
    usage_tokens: int = 0


class AIClient:
    """Thin async wrapper over ``AsyncOpenAI`` chat streaming."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_sdk_client(settings)
        self._model_ids: list[str] | None = None
        self._model_ids_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[ChatCompletionToolParam] | None = None,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream one chat completion.

        Args:
            messages: Neutral :class:`Message` objects or chat-format dicts.
            model: Overrides the configured model.
            tools: Chat-completions tool definitions.
            temperature: Sampling temperature; ``None`` leaves the server default.
            max_tokens: Completion budget; ``None`` leaves the server default.
            **extra_params: Passed through to ``chat.completions.stream``.

        Yields:
            Content and tool-argument deltas, then one ``completion.done`` event.

        Raises:
            ValueError: No messages were given.
        """
        request: dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": self._chat_messages(messages),
        }
        if tools:
            request["tools"] = list(tools)
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        request.update(extra_params)

        LOGGER.debug("Streaming %s with %d message(s)", request["model"], len(request["messages"]))
        if self._settings.debug_logging:
            log_payload(LOGGER, "Chat payload", request)

        async for attempt in self._retry_policy():
            with attempt:
                async with self._client.chat.completions.stream(**request) as stream:
                    async for raw in stream:
                        event = self._translate(raw)
                        if event is not None:
                            yield event
                    completion = await stream.get_final_completion()
                yield self._summarize_completion(completion)
                break

    async def list_models(self, *, force_refresh: bool = False) -> list[str]:
        """Model ids served by the endpoint, cached after the first call."""
        async with self._model_ids_lock:
            if self._model_ids is None or force_refresh:
                page = await self._client.models.list()
                self._model_ids = [entry.id for entry in page.data if getattr(entry, "id", None)]
            return list(self._model_ids)

    def count_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    async def aclose(self) -> None:
        """Release the SDK client's connection pool."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _create_sdk_client(settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=dict(settings.default_headers) if settings.default_headers else None,
        )

    def _retry_policy(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
        )

    @staticmethod
    def _chat_messages(messages: Iterable[Message | Mapping[str, Any]]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for message in messages:
            if isinstance(message, Message):
                converted.append(message.to_chat_param())
            elif isinstance(message, Mapping):
                converted.append(dict(message))
            else:
                raise TypeError(f"Unsupported message type: {type(message).__name__}")
        if not converted:
            raise ValueError("At least one message is required to start a chat")
        return converted

    @staticmethod
    def _translate(raw: Any) -> AIStreamEvent | None:
        kind = getattr(raw, "type", None)
        if kind == "content.delta":
            text = getattr(raw, "delta", None)
            return AIStreamEvent(type=kind, content=str(text)) if text else None
        if kind == "content.done":
            return AIStreamEvent(type=kind, content=getattr(raw, "content", None))
        if kind in _TOOL_ARGUMENT_EVENTS:
            return AIStreamEvent(
                type=kind,
                tool_name=getattr(raw, "name", None),
                tool_index=getattr(raw, "index", None),
                tool_arguments=getattr(raw, "arguments", None),
                arguments_delta=getattr(raw, "arguments_delta", None),
            )
        return None

    @staticmethod
    def _summarize_completion(completion: Any) -> AIStreamEvent:
        text: str | None = None
        calls: list[StreamedToolCall] = []
        choices = getattr(completion, "choices", None) or []
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None)
            for position, call in enumerate(getattr(message, "tool_calls", None) or []):
                function = getattr(call, "function", None)
                calls.append(
                    StreamedToolCall(
                        call_id=str(getattr(call, "id", "") or f"call_{position}"),
                        name=str(getattr(function, "name", "") or ""),
                        arguments=str(getattr(function, "arguments", "") or "{}"),
                        index=position,
                    )
                )
        usage = getattr(completion, "usage", None)
        total = int(getattr(usage, "total_tokens", 0) or 0) if usage is not None else 0
        return AIStreamEvent(type="completion.done", content=text, tool_calls=tuple(calls), usage_tokens=total)
