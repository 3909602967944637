"""Progress events streamed to callers during a run.

Events are flat dictionaries with a ``type`` key. Consumers must ignore types
they do not recognise. Sinks are optional; a failing sink is logged and
never aborts the run.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

__all__ = [
    "EventType",
    "AgentEvent",
    "EventSink",
    "SafeEventSink",
]

LOGGER = logging.getLogger(__name__)


class EventType:
    """Event type identifiers."""

    ITERATION = "iteration"
    STATUS = "status"
    TOOL_PREPARING = "tool_preparing"
    TOOL_PROGRESS = "tool_progress"
    TOOLS_START = "tools_start"
    TOOL_START = "tool_start"
    TOOL_COMPLETE = "tool_complete"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    RESPONSE_CHUNK = "response_chunk"
    INFO = "info"
    ERROR = "error"

    ALL: tuple[str, ...] = (
        ITERATION,
        STATUS,
        TOOL_PREPARING,
        TOOL_PROGRESS,
        TOOLS_START,
        TOOL_START,
        TOOL_COMPLETE,
        TOOL_RESULT,
        THINKING,
        RESPONSE_CHUNK,
        INFO,
        ERROR,
    )


@dataclass(slots=True, frozen=True)
class AgentEvent:
    """A single progress event.

    Attributes:
        type: One of :class:`EventType` (other values are allowed).
        payload: Event-specific fields.
    """

    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into ``{"type": ..., **payload}``."""
        return {"type": self.type, **dict(self.payload)}


# A sink receives events synchronously; it may return an awaitable, which is
# scheduled on the running loop.
EventSink = Callable[[AgentEvent], Any]


class SafeEventSink:
    """Wraps an optional sink so that emitting can never fail the run."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self._sink = sink
        self._failures = 0
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    @property
    def failures(self) -> int:
        """Number of sink invocations that raised."""
        return self._failures

    def emit(self, event_type: str, **payload: Any) -> None:
        """Build and deliver an event."""
        self.send(AgentEvent(type=event_type, payload=payload))

    def send(self, event: AgentEvent) -> None:
        if self._sink is None:
            return
        try:
            result = self._sink(event)
        except Exception:
            self._failures += 1
            LOGGER.exception("Event sink failed for %s event", event.type)
            return
        if inspect.isawaitable(result):
            self._schedule(result, event.type)

    def __call__(self, event_type: str, **payload: Any) -> None:
        self.emit(event_type, **payload)

    async def drain(self) -> None:
        """Wait for asynchronous sink deliveries scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, awaitable: Any, event_type: str) -> None:
        try:
            future = asyncio.ensure_future(awaitable)
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._failures += 1
            LOGGER.warning("No running loop to deliver %s event", event_type)
            return
        self._pending.add(future)
        future.add_done_callback(lambda done: self._on_done(done, event_type))

    def _on_done(self, future: asyncio.Future[Any], event_type: str) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._failures += 1
            LOGGER.error("Async event sink failed for %s event: %s", event_type, exc)
