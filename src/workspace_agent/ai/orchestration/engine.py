"""Iteration engine: the bounded model/tool loop behind every run.

Each iteration prunes stale ephemeral context, trims the transcript to the
token ceiling, runs exactly one adapter turn and, when the model asked for
tools, dispatches them and feeds the results back. The run ends when a turn
requests no tools, when the iteration cap is hit, on a transport failure,
or on cancellation. Failures are returned as a :class:`RunResult`, never
raised.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Iterable, Mapping, Sequence, TypeVar, Union

from ..errors import AgentError, ErrorKind, IterationBudgetExceeded, RunCancelled, TransportError
from ..prompts import build_system_prompt
from ..providers.base import ProviderAdapter
from ..providers.registry import ProviderRegistry
from ..tools.catalog import filter_tool_specs
from ..tools.types import ToolCategory, ToolExecutor, ToolSpec
from .context import DEFAULT_CONTEXT_TOKENS, build_messages, prune_ephemeral_messages, trim_messages
from .dispatch import MAX_INLINE_IMAGE_CHARS, MAX_INLINE_IMAGES, ToolDispatcher
from .events import EventSink, EventType, SafeEventSink
from .types import Message, PendingEdit, RunParams, RunResult, SessionState

if TYPE_CHECKING:  # pragma: no cover - import only for typing
    from ...settings import EngineSettings

__all__ = ["EngineConfig", "IterationEngine", "run", "DEFAULT_MAX_ITERATIONS"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 75

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class EngineConfig:
    """Run-wide bounds for the iteration engine.

    Attributes:
        max_iterations: Hard cap on adapter turns per run.
        max_context_tokens: Estimated-token ceiling applied before each turn.
        max_inline_images: Images that may be inlined into one turn.
        max_inline_image_chars: Base64 budget for inlined images.
        debug_logging: Log per-iteration transcript sizes.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_context_tokens: int = DEFAULT_CONTEXT_TOKENS
    max_inline_images: int = MAX_INLINE_IMAGES
    max_inline_image_chars: int = MAX_INLINE_IMAGE_CHARS
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> EngineConfig:
        return cls(
            max_iterations=settings.max_iterations,
            max_context_tokens=settings.max_context_tokens,
            max_inline_images=settings.max_inline_images,
            max_inline_image_chars=settings.max_inline_image_chars,
            debug_logging=settings.debug_logging,
        )


class IterationEngine:
    """Drives one run against one adapter."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        executor: ToolExecutor,
        *,
        config: EngineConfig | None = None,
        sink: SafeEventSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or EngineConfig()
        self._sink = sink or SafeEventSink()
        self._cancel_event = cancel_event
        self._dispatcher = ToolDispatcher(
            executor,
            sink=self._sink,
            max_inline_images=self._config.max_inline_images,
            max_inline_image_chars=self._config.max_inline_image_chars,
        )

    async def run(self, messages: Sequence[Message], tools: Sequence[ToolSpec], *, model: str) -> RunResult:
        """Loop until the model stops requesting tools or a bound is hit."""
        max_iterations = self._config.max_iterations
        hints = self._adapter.get_performance_hints()
        transcript: list[Message] = list(messages)
        session_state: SessionState | None = None
        pending_edits: list[PendingEdit] = []
        tokens_used = 0
        skipped = 0
        iteration = 0
        last_text = ""

        LOGGER.info(
            "Starting run with %s model=%s, %d tool(s), max_iterations=%d",
            self._adapter.id,
            model,
            len(tools),
            max_iterations,
        )
        try:
            while iteration < max_iterations:
                self._raise_if_cancelled()
                iteration += 1
                self._sink.emit(EventType.ITERATION, iteration=iteration, max=max_iterations)
                self._sink.emit(
                    EventType.STATUS,
                    message="Calling AI model..." if iteration == 1 else f"Processing (step {iteration})...",
                )

                transcript = list(prune_ephemeral_messages(transcript, iteration))
                outgoing = trim_messages(transcript, self._config.max_context_tokens)
                if self._config.debug_logging:
                    LOGGER.debug("Iteration %d sending %d message(s)", iteration, len(outgoing))

                turn = await self._cancellable(
                    self._adapter.run_one_turn(
                        outgoing,
                        tools,
                        session_state,
                        hints,
                        model=model,
                        on_event=self._sink.emit,
                    )
                )
                tokens_used += turn.usage_tokens
                last_text = turn.text

                if not turn.has_tool_calls:
                    LOGGER.info("Run finished after %d iteration(s), %d token(s)", iteration, tokens_used)
                    return RunResult(
                        success=True,
                        response_text=turn.text,
                        tokens_used=tokens_used,
                        iterations=iteration,
                        pending_edits=tuple(pending_edits),
                        skipped_tool_calls=skipped,
                    )

                if turn.text.strip():
                    self._sink.emit(EventType.THINKING, content=turn.text)

                batch = await self._cancellable(
                    self._dispatcher.dispatch(
                        turn.tool_calls,
                        hints,
                        epoch=iteration,
                        allow_inline_images=self._adapter.capabilities.vision,
                    )
                )
                skipped += batch.skipped
                pending_edits.extend(batch.pending_edits)

                transcript.append(batch.assistant_message(turn.text))
                transcript.extend(batch.tool_messages)
                if batch.context_message is not None:
                    transcript.append(batch.context_message)
                session_state = self._adapter.continue_session(
                    turn.session_state,
                    batch.executed,
                    batch.tool_messages,
                    batch.context_message,
                )

            raise IterationBudgetExceeded(
                message=f"Max iterations ({max_iterations}) reached",
                max_iterations=max_iterations,
            )
        except AgentError as exc:
            return self._failure(exc, last_text, tokens_used, iteration, pending_edits, skipped)
        except Exception as exc:
            LOGGER.exception("Run failed with an unexpected error")
            error = AgentError(message=f"Internal error: {exc}", details={"exception": type(exc).__name__})
            return self._failure(error, last_text, tokens_used, iteration, pending_edits, skipped)
        finally:
            await self._sink.drain()

    def _failure(
        self,
        error: AgentError,
        text: str,
        tokens_used: int,
        iterations: int,
        pending_edits: Sequence[PendingEdit],
        skipped: int,
    ) -> RunResult:
        if error.kind == ErrorKind.CANCELLED:
            LOGGER.info("Run cancelled at iteration %d", iterations)
        else:
            LOGGER.error("Run failed (%s): %s", error.kind, error.message)
        self._sink.emit(EventType.ERROR, error=error.message, kind=error.kind)
        return RunResult(
            success=False,
            response_text=text,
            tokens_used=tokens_used,
            iterations=iterations,
            pending_edits=tuple(pending_edits),
            error=error.message,
            error_kind=error.kind,
            skipped_tool_calls=skipped,
        )

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise RunCancelled(message="Run cancelled")

    async def _cancellable(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the cancel event fires first."""
        if self._cancel_event is None:
            return await awaitable
        self._raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise RunCancelled(message="Run cancelled")


# -----------------------------------------------------------------------------
# Entry Point
# -----------------------------------------------------------------------------


async def run(
    registry_or_adapter: Union[ProviderRegistry, ProviderAdapter],
    tool_executor: ToolExecutor,
    params: RunParams,
    event_sink: EventSink | SafeEventSink | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
    config: EngineConfig | None = None,
    tools: Iterable[ToolSpec | Mapping[str, Any]] = (),
) -> RunResult:
    """Run the agent loop for one request.

    Args:
        registry_or_adapter: A registry (looked up by ``params.model``) or an adapter.
        tool_executor: Host executor that runs tools.
        params: The request and its editor context.
        event_sink: Optional progress callback receiving :class:`AgentEvent`.
        cancel_event: Set it to stop the run at the next suspension point.
        config: Engine bounds; defaults to :class:`EngineConfig`.
        tools: Tool specs (or raw definitions) the host offers.

    Returns:
        The run outcome. Failures are reported in the result, never raised.
    """
    sink = event_sink if isinstance(event_sink, SafeEventSink) else SafeEventSink(event_sink)

    if isinstance(registry_or_adapter, ProviderRegistry):
        adapter = registry_or_adapter.get_provider(params.model)
    else:
        adapter = registry_or_adapter
    if adapter is None:
        error = TransportError(message=f"No provider configured for model: {params.model}")
        LOGGER.error("%s", error.message)
        sink.emit(EventType.ERROR, error=error.message, kind=error.kind)
        await sink.drain()
        return RunResult(success=False, error=error.message, error_kind=error.kind)

    specs = filter_tool_specs(
        tools,
        capability_filter=adapter.filter_tools_by_capability,
        allowed_names=params.allowed_tools,
        disabled_categories=() if params.terminal_enabled else (ToolCategory.TERMINAL,),
    )
    messages = build_messages(
        build_system_prompt(params, provider_name=adapter.name),
        params.message,
        open_files=params.open_files,
        summary=params.summary,
        history=params.history,
        selection=params.selection,
        document=params.document,
    )
    engine = IterationEngine(adapter, tool_executor, config=config, sink=sink, cancel_event=cancel_event)
    return await engine.run(messages, specs, model=params.model)
