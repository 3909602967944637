"""Provider adapter contract.

One adapter exists per wire-protocol family. Each turns the engine's neutral
transcript into a single backend request, streams the reply, and hands back
a :class:`TurnResult`. Adapters never loop and never execute tools.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import httpx

from ..errors import TransportError
from ..orchestration.types import Message, PerformanceHints, SessionState, ToolCall, TurnResult
from ..tools.types import ToolSpec

__all__ = [
    "EventCallback",
    "ProviderCapabilities",
    "ProviderAdapter",
    "strip_provider_prefix",
    "system_text",
]

LOGGER = logging.getLogger(__name__)

# Called as ``on_event(event_type, **payload)``; see ``SafeEventSink.emit``.
EventCallback = Callable[..., None]

WILDCARD = "*"


def strip_provider_prefix(model: str) -> str:
    """Drop a leading ``provider/`` segment from a model id."""
    if "/" in model:
        return model.split("/", 1)[1]
    return model


def _noop(event_type: str, **payload: Any) -> None:
    return None


@dataclass(slots=True, frozen=True)
class ProviderCapabilities:
    """Feature flags a provider declares."""

    tools: bool = True
    vision: bool = True
    streaming: bool = True
    continuation: bool = False
    reduced_parallelism: bool = False


class ProviderAdapter(ABC):
    """Base class for one backend protocol family.

    Subclasses set ``id`` and ``name`` and implement :meth:`run_one_turn`.
    """

    id: str = "unknown"
    name: str = "Unknown"
    default_models: tuple[str, ...] = ()
    default_hints: PerformanceHints = PerformanceHints()

    def __init__(
        self,
        *,
        hints: PerformanceHints | None = None,
        tool_compatibility: Sequence[str] = (WILDCARD,),
        models: Sequence[str] | None = None,
    ) -> None:
        self._hints = hints or self.default_hints
        self._tool_compatibility = tuple(tool_compatibility)
        self._models = tuple(models) if models is not None else self.default_models

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(reduced_parallelism=self._hints.reduced_parallelism)

    def get_performance_hints(self) -> PerformanceHints:
        """Bounds the engine applies to each iteration with this provider."""
        return self._hints

    def filter_tools_by_capability(self, tools: Sequence[ToolSpec]) -> list[ToolSpec]:
        """Keep the tools this provider is known to handle."""
        if not self.capabilities.tools:
            return []
        if WILDCARD in self._tool_compatibility:
            return list(tools)
        allowed = set(self._tool_compatibility)
        kept = []
        for tool in tools:
            if tool.name in allowed:
                kept.append(tool)
            else:
                LOGGER.debug("[%s] Skipping unsupported tool: %s", self.id, tool.name)
        return kept

    def available_models(self) -> tuple[str, ...]:
        return self._models

    def supports_model(self, model: str) -> bool:
        """Loose match against the provider's known model ids."""
        return any(known == model or known in model or model in known for known in self._models)

    @abstractmethod
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
        """Run exactly one request/response exchange.

        Args:
            messages: The run's transcript, already trimmed.
            tools: Tool specs already filtered for this run.
            session_state: Continuation state from the previous turn, if any.
            hints: Performance hints in effect for the run.
            model: Model id (a ``provider/`` prefix is tolerated).
            on_event: Progress callback for streaming events.

        Returns:
            The assistant text, requested tool calls, next session state and usage.

        Raises:
            TransportError: The backend could not be reached or rejected the request.
        """

    def continue_session(
        self,
        session_state: SessionState | None,
        tool_calls: Sequence[ToolCall],
        tool_messages: Sequence[Message],
        context_message: Message | None = None,
    ) -> SessionState | None:
        """Prepare continuation state after a tool batch.

        Stateless adapters resend the transcript and return ``None``.
        """
        return None

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
        return None

    def _emitter(self, on_event: EventCallback | None) -> EventCallback:
        return on_event or _noop

    def _transport_error(self, exc: BaseException) -> TransportError:
        status = getattr(exc, "status_code", None)
        if status is None and isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
        message = f"{self.name} API error: {exc}"
        LOGGER.error("%s", message)
        return TransportError(
            message=message,
            details={"exception": type(exc).__name__},
            provider=self.id,
            status_code=status if isinstance(status, int) else None,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


def system_text(messages: Sequence[Message]) -> str | None:
    """Join all system messages into one prompt, or ``None`` when absent."""
    parts = [message.text for message in messages if message.role == "system" and message.text]
    return "\n\n".join(parts) if parts else None

