"""Shared fakes for engine, dispatch and adapter tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Mapping, Sequence

from workspace_agent.ai.orchestration.events import AgentEvent
from workspace_agent.ai.orchestration.types import (
    Message,
    PerformanceHints,
    SessionState,
    ToolCall,
    TurnResult,
)
from workspace_agent.ai.providers.base import ProviderAdapter, ProviderCapabilities
from workspace_agent.ai.tools.types import ToolSpec


def make_call(call_id: str, name: str, args: Mapping[str, Any] | None = None, index: int = 0) -> ToolCall:
    return ToolCall.create(call_id, name, json.dumps(dict(args or {})), index)


def tool_turn(*calls: ToolCall, text: str = "", usage: int = 0) -> TurnResult:
    return TurnResult(text=text, tool_calls=calls, usage_tokens=usage)


def text_turn(text: str, usage: int = 0) -> TurnResult:
    return TurnResult(text=text, usage_tokens=usage)


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays scripted turns and records what it was sent.

    Script entries may be a :class:`TurnResult`, an exception to raise, or a
    callable taking the turn number. Once the script runs out ``default`` is
    used.
    """

    id = "fake"
    name = "Fake Provider"
    default_models = ("fake-model",)

    def __init__(
        self,
        script: Iterable[Any] = (),
        *,
        default: Any = None,
        hints: PerformanceHints | None = None,
        vision: bool = True,
        delay: float = 0.0,
        tool_compatibility: Sequence[str] = ("*",),
    ) -> None:
        super().__init__(hints=hints or PerformanceHints(), tool_compatibility=tool_compatibility)
        self._script = list(script)
        self._default = default if default is not None else text_turn("done")
        self._vision = vision
        self._delay = delay
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(vision=self._vision)

    async def run_one_turn(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec],
        session_state: SessionState | None,
        hints: PerformanceHints,
        *,
        model: str,
        on_event: Any = None,
    ) -> TurnResult:
        self.calls.append(
            {
                "messages": tuple(messages),
                "tools": tuple(tools),
                "session_state": session_state,
                "model": model,
            }
        )
        if self._delay:
            await asyncio.sleep(self._delay)
        entry = self._script.pop(0) if self._script else self._default
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(len(self.calls))
        return entry

    async def aclose(self) -> None:
        self.closed = True


class RecordingExecutor:
    """Tool executor returning canned results and tracking concurrency."""

    def __init__(
        self,
        results: Mapping[str, Any] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self.results = dict(results or {})
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, name: str, arguments: Mapping[str, Any]) -> Any:
        self.calls.append((name, dict(arguments)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            value = self.results.get(name, {"ok": True})
            if isinstance(value, BaseException):
                raise value
            if callable(value):
                return value(arguments)
            return value
        finally:
            self.active -= 1


class EventCollector:
    """Synchronous sink that keeps every event."""

    def __init__(self) -> None:
        self.events: list[AgentEvent] = []

    def __call__(self, event: AgentEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of(self, event_type: str) -> list[AgentEvent]:
        return [event for event in self.events if event.type == event_type]


def looping_turn(name: str = "file_read") -> Callable[[int], TurnResult]:
    """Turn factory that always asks for one more tool call."""

    def _turn(number: int) -> TurnResult:
        return tool_turn(make_call(f"call_{number}", name, {"path": f"file_{number}.txt"}))

    return _turn
