"""Tool dispatch for one iteration.

Takes the calls a turn requested, clips them to the provider's per-iteration
limit, runs them concurrently under a semaphore, and turns the outcomes into
tool messages, progress events, pending edits and the optional image-context
message for the next turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..errors import ToolExecutionError
from ..tools.summaries import summarize_tool_result
from ..tools.types import ToolExecutor
from .events import EventType, SafeEventSink
from .sanitizer import is_image_payload, sanitize, serialize_tool_result
from .tool_call_parser import parsed_tool_call_id
from .types import IMAGE_CONTEXT_TAG, Message, PendingEdit, PerformanceHints, ToolCall

__all__ = [
    "ToolOutcome",
    "BatchResult",
    "ToolDispatcher",
    "normalize_tool_calls",
    "UNKNOWN_TOOL_NAME",
    "clip_tool_calls",
    "build_image_context",
    "image_manifest",
]

LOGGER = logging.getLogger(__name__)

UNKNOWN_TOOL_NAME = "unknown"
MAX_INLINE_IMAGES = 8
MAX_INLINE_IMAGE_CHARS = 200_000

IMAGE_MANIFEST_HEADER = "[Images loaded from read_image tool calls]"
IMAGE_INLINE_NOTE = "[Including up to {count} images inline for vision.]"
IMAGE_OMITTED_NOTE = (
    "[Omitting base64 image payloads to avoid token explosion. "
    "If you need visual analysis, ask explicitly and/or switch to Claude vision flow.]"
)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """Result of one executed tool call.

    Attributes:
        call: The executed call.
        result: Raw value returned by the executor (or the error stand-in).
        message: ``tool`` message carrying the sanitized JSON result.
        summary: One-line human summary for progress events.
        success: False when the result is an ``{"error": ...}`` object.
    """

    call: ToolCall
    result: Any
    message: Message
    summary: str
    success: bool


@dataclass(slots=True, frozen=True)
class BatchResult:
    """Everything one tool batch contributes to the transcript."""

    executed: tuple[ToolCall, ...] = ()
    outcomes: tuple[ToolOutcome, ...] = ()
    skipped: int = 0
    pending_edits: tuple[PendingEdit, ...] = ()
    context_message: Message | None = None
    images: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)

    @property
    def tool_messages(self) -> tuple[Message, ...]:
        return tuple(outcome.message for outcome in self.outcomes)

    def assistant_message(self, text: str) -> Message:
        """Assistant turn listing exactly the calls that were executed."""
        return Message.assistant(text, tool_calls=self.executed)


# -----------------------------------------------------------------------------
# Call Normalization
# -----------------------------------------------------------------------------


def normalize_tool_calls(calls: Sequence[ToolCall]) -> tuple[ToolCall, ...]:
    """Give every call a unique id and a contiguous index.

    A call that arrives without a tool name becomes an ``unknown`` call with
    empty arguments so it still gets a result message.
    """
    seen: set[str] = set()
    normalized: list[ToolCall] = []
    for index, call in enumerate(calls):
        name = call.name
        arguments = call.arguments
        parsed = call.parsed_arguments
        if not name:
            LOGGER.warning("Malformed tool call %r at index %d has no name", call.call_id, index)
            name, arguments, parsed = UNKNOWN_TOOL_NAME, "{}", {}
        call_id = call.call_id
        if not call_id or call_id in seen:
            call_id = parsed_tool_call_id(name, index)
            LOGGER.debug("Assigned id %s to tool call %s", call_id, name)
        seen.add(call_id)
        normalized.append(
            ToolCall(
                call_id=call_id,
                name=name,
                arguments=arguments,
                parsed_arguments=parsed,
                index=index,
            )
        )
    return tuple(normalized)


def clip_tool_calls(calls: Sequence[ToolCall], limit: int) -> tuple[tuple[ToolCall, ...], int]:
    """Keep the first ``limit`` calls; return them with the skipped count."""
    if limit <= 0 or len(calls) <= limit:
        return tuple(calls), 0
    return tuple(calls[:limit]), len(calls) - limit


# -----------------------------------------------------------------------------
# Image Context
# -----------------------------------------------------------------------------


def _image_mime(image: Mapping[str, Any]) -> str:
    return str(image.get("mime_type") or image.get("mimeType") or "image/png")


def _image_line(image: Mapping[str, Any]) -> str:
    data = str(image.get("data") or "")
    size = image.get("size")
    if not isinstance(size, (int, float)):
        size = len(data) * 3 // 4
    path = image.get("path") or image.get("file_path") or "(unknown)"
    fmt = image.get("format") or "image"
    return f"- {path} ({fmt}, ~{round(size / 1024)}KB)"


def image_manifest(images: Sequence[Mapping[str, Any]], *, inline_count: int = 0) -> str:
    """Textual listing of loaded images plus a note on whether bytes follow."""
    lines = "\n".join(_image_line(image) for image in images)
    note = IMAGE_INLINE_NOTE.format(count=inline_count) if inline_count else IMAGE_OMITTED_NOTE
    return f"{IMAGE_MANIFEST_HEADER}\n{lines}\n\n{note}"


def build_image_context(
    images: Sequence[Mapping[str, Any]],
    *,
    epoch: int,
    allow_inline: bool = True,
    max_images: int = MAX_INLINE_IMAGES,
    max_chars: int = MAX_INLINE_IMAGE_CHARS,
) -> Message | None:
    """Ephemeral user message describing this batch's images.

    The first ``max_images`` images are inlined only when their combined
    base64 length is within ``max_chars``; otherwise the manifest alone is
    sent.
    """
    if not images:
        return None
    selected = list(images[:max_images])
    total_chars = sum(len(str(image.get("data") or "")) for image in selected)
    inline = allow_inline and total_chars <= max_chars
    if not inline:
        LOGGER.info(
            "Sending manifest only for %d image(s) (%d base64 chars, inline=%s)",
            len(images),
            total_chars,
            allow_inline,
        )
        content: str | tuple[Mapping[str, Any], ...] = image_manifest(images)
    else:
        blocks: list[Mapping[str, Any]] = [
            {"type": "text", "text": image_manifest(images, inline_count=len(selected))}
        ]
        blocks.extend(
            {"type": "image", "mime_type": _image_mime(image), "data": str(image.get("data"))}
            for image in selected
        )
        content = tuple(blocks)
    return Message(role="user", content=content, ephemeral=IMAGE_CONTEXT_TAG, epoch=epoch)


# -----------------------------------------------------------------------------
# Dispatcher
# -----------------------------------------------------------------------------


class ToolDispatcher:
    """Runs one batch of tool calls through a :class:`ToolExecutor`.

    Example:
        dispatcher = ToolDispatcher(executor, sink=SafeEventSink(on_event))
        batch = await dispatcher.dispatch(turn.tool_calls, hints, epoch=3)
    """

    def __init__(
        self,
        executor: ToolExecutor,
        *,
        sink: SafeEventSink | None = None,
        max_inline_images: int = MAX_INLINE_IMAGES,
        max_inline_image_chars: int = MAX_INLINE_IMAGE_CHARS,
    ) -> None:
        self._executor = executor
        self._sink = sink or SafeEventSink()
        self._max_inline_images = max_inline_images
        self._max_inline_image_chars = max_inline_image_chars

    async def dispatch(
        self,
        calls: Sequence[ToolCall],
        hints: PerformanceHints,
        *,
        epoch: int,
        allow_inline_images: bool = True,
    ) -> BatchResult:
        """Execute ``calls`` and collect their contribution to the transcript.

        Args:
            calls: Tool calls requested by the model this turn.
            hints: Provider bounds (per-iteration limit, concurrency).
            epoch: Current iteration, used to tag the image-context message.
            allow_inline_images: Whether the provider accepts image input.

        Returns:
            The executed calls and their outcomes, in call order.
        """
        normalized = normalize_tool_calls(calls)
        executed, skipped = clip_tool_calls(normalized, hints.max_tools_per_iteration)
        if skipped:
            LOGGER.warning(
                "Limiting tool calls from %d to %d (provider limit)", len(normalized), len(executed)
            )
            self._sink.emit(
                EventType.INFO,
                message=f"Processing {len(executed)} of {len(normalized)} tool calls (provider limit)",
            )
        self._sink.emit(
            EventType.TOOLS_START,
            tools=[{"name": call.name, "args": dict(call.parsed_arguments)} for call in executed],
        )

        semaphore = asyncio.Semaphore(hints.effective_concurrency)
        results = await asyncio.gather(
            *(self._execute(call, semaphore) for call in executed),
            return_exceptions=True,
        )

        outcomes: list[ToolOutcome] = []
        pending_edits: list[PendingEdit] = []
        images: list[Mapping[str, Any]] = []
        for call, result in zip(executed, results):
            if isinstance(result, BaseException):
                result = {"error": f"Tool execution failed: {result}"}
            outcome = self._outcome(call, result)
            outcomes.append(outcome)
            if isinstance(result, Mapping) and result.get("action") == "queue_edit":
                pending_edits.append(PendingEdit.from_result(result))
            if is_image_payload(result):
                image = dict(result)
                image.setdefault("path", call.parsed_arguments.get("path") or call.parsed_arguments.get("file_path"))
                images.append(image)
            self._sink.emit(
                EventType.TOOL_RESULT,
                tool=call.name,
                success=outcome.success,
                summary=outcome.summary,
                index=call.index,
            )

        self._sink.emit(EventType.STATUS, message="Tools done, AI analyzing results...")
        context_message = build_image_context(
            images,
            epoch=epoch,
            allow_inline=allow_inline_images,
            max_images=self._max_inline_images,
            max_chars=self._max_inline_image_chars,
        )
        return BatchResult(
            executed=executed,
            outcomes=tuple(outcomes),
            skipped=skipped,
            pending_edits=tuple(pending_edits),
            context_message=context_message,
            images=tuple(images),
        )

    async def _execute(self, call: ToolCall, semaphore: asyncio.Semaphore) -> Any:
        async with semaphore:
            args = dict(call.parsed_arguments)
            self._sink.emit(EventType.TOOL_START, tool=call.name, args=args, index=call.index)
            try:
                result = await self._executor.execute(call.name, args)
            except Exception as exc:
                error = ToolExecutionError(message=f"Tool execution failed: {exc}", tool_name=call.name)
                LOGGER.error("Tool %s raised: %s", call.name, exc, exc_info=True)
                result = {"error": error.message}
            self._sink.emit(EventType.TOOL_COMPLETE, tool=call.name, result=sanitize(result), index=call.index)
            return result

    def _outcome(self, call: ToolCall, result: Any) -> ToolOutcome:
        success = not (isinstance(result, Mapping) and result.get("error"))
        message = Message.tool(
            serialize_tool_result(result, tool_name=call.name),
            call.call_id,
            name=call.name,
        )
        return ToolOutcome(
            call=call,
            result=result,
            message=message,
            summary=summarize_tool_result(call.name, call.parsed_arguments, result),
            success=success,
        )
