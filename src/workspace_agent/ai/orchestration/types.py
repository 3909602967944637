"""Core type definitions for the iteration engine.

This module defines the immutable dataclasses that flow between the context
builder, the provider adapters, tool dispatch and the engine. All types are
frozen; adapters receive the same objects the engine holds.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Sequence

from .tool_call_parser import parse_arguments

__all__ = [
    "MessageRole",
    "Message",
    "ToolCall",
    "OpenFile",
    "PerformanceHints",
    "SessionState",
    "TurnResult",
    "PendingEdit",
    "RunParams",
    "RunResult",
    "IMAGE_CONTEXT_TAG",
]

IMAGE_CONTEXT_TAG = "image_context"


# -----------------------------------------------------------------------------
# Tool Calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool call requested by the model.

    Attributes:
        call_id: Provider-issued identifier linking the call to its result.
        name: Name of the tool to call.
        arguments: Raw argument string as streamed by the provider.
        parsed_arguments: Best-effort parse of ``arguments``; ``{}`` when invalid.
        index: Position of the call within its turn.
    """

    call_id: str
    name: str
    arguments: str = "{}"
    parsed_arguments: Mapping[str, Any] = field(default_factory=dict)
    index: int = 0

    @classmethod
    def create(cls, call_id: str, name: str, arguments: Any, index: int = 0) -> ToolCall:
        """Build a call from raw provider output, repairing the arguments."""
        if isinstance(arguments, Mapping):
            raw = json.dumps(dict(arguments), ensure_ascii=False)
            parsed: Mapping[str, Any] = dict(arguments)
        else:
            raw = arguments if isinstance(arguments, str) and arguments.strip() else "{}"
            parsed = parse_arguments(raw, tool_name=name)
        return cls(call_id=call_id, name=name, arguments=raw, parsed_arguments=parsed, index=index)

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to the OpenAI chat ``tool_calls`` entry format."""
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message owned by a single run.

    ``content`` is either plain text or a tuple of neutral content blocks:
    ``{"type": "text", "text": ...}`` and
    ``{"type": "image", "mime_type": ..., "data": ...}``. Adapters translate
    blocks into their own wire format.

    Attributes:
        role: The role of the message sender.
        content: Text or structured content blocks.
        name: Optional tool name for tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
        ephemeral: Tag for context entries that are pruned by epoch.
        epoch: Iteration number an ephemeral entry belongs to.
        metadata: Additional metadata (not sent to the model).
    """

    role: MessageRole
    content: str | tuple[Mapping[str, Any], ...]
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    ephemeral: str | None = None
    epoch: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Concatenated text content, ignoring non-text blocks."""
        if isinstance(self.content, str):
            return self.content
        parts = [
            str(block.get("text", ""))
            for block in self.content
            if isinstance(block, Mapping) and block.get("type") == "text"
        ]
        return "\n".join(part for part in parts if part)

    @property
    def image_blocks(self) -> tuple[Mapping[str, Any], ...]:
        """Image blocks carried by structured content."""
        if isinstance(self.content, str):
            return ()
        return tuple(
            block for block in self.content if isinstance(block, Mapping) and block.get("type") == "image"
        )

    @property
    def is_ephemeral(self) -> bool:
        return self.ephemeral is not None

    def with_content(self, content: str | tuple[Mapping[str, Any], ...]) -> Message:
        """Return a copy with replaced content."""
        return replace(self, content=content)

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to OpenAI's chat message format (images as data URLs)."""
        payload: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            payload["content"] = self.content
        else:
            parts: list[dict[str, Any]] = []
            for block in self.content:
                if block.get("type") == "image":
                    url = f"data:{block.get('mime_type')};base64,{block.get('data')}"
                    parts.append({"type": "image_url", "image_url": {"url": url}})
                elif block.get("type") == "text":
                    parts.append({"type": "text", "text": str(block.get("text", ""))})
            payload["content"] = parts
        if self.name is not None and self.role == "tool":
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        return payload

    @classmethod
    def from_mapping(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from a loose ``{role, content}`` mapping."""
        content = param.get("content", "")
        if not isinstance(content, str):
            content = tuple(content) if isinstance(content, Sequence) else str(content)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=content,
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
        )

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        """Create a system message."""
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str | tuple[Mapping[str, Any], ...], **metadata: Any) -> Message:
        """Create a user message."""
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCall] | None = None,
        **metadata: Any,
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        """Create a tool result message."""
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Context Inputs
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OpenFile:
    """An editor file whose content is shared with the model."""

    path: str
    content: str

    @classmethod
    def from_value(cls, value: OpenFile | Mapping[str, Any]) -> OpenFile:
        if isinstance(value, OpenFile):
            return value
        path = value.get("path") or value.get("file") or "untitled"
        return cls(path=str(path), content=str(value.get("content") or ""))


# -----------------------------------------------------------------------------
# Provider Hints And State
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PerformanceHints:
    """Per-provider bounds the engine applies to each iteration.

    Attributes:
        max_concurrent_tools: Semaphore size for one tool batch.
        max_tools_per_iteration: Calls beyond this count are skipped and reported.
        max_output_tokens: Completion budget requested from the provider.
        reduced_parallelism: Provider is slow or local; keep concurrency low.
        conservative_tokens: Provider should clamp completion budgets.
    """

    max_concurrent_tools: int = 10
    max_tools_per_iteration: int = 15
    max_output_tokens: int = 4_096
    reduced_parallelism: bool = False
    conservative_tokens: bool = False

    def with_updates(self, **kwargs: Any) -> PerformanceHints:
        """Return new hints with updated values."""
        return replace(self, **kwargs)

    @property
    def effective_concurrency(self) -> int:
        """Semaphore size actually used for a tool batch."""
        return max(1, self.max_concurrent_tools)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> PerformanceHints:
        """Build hints from a settings mapping (snake_case or camelCase keys)."""
        aliases = {
            "maxConcurrentTools": "max_concurrent_tools",
            "maxToolsPerIteration": "max_tools_per_iteration",
            "maxOutputTokens": "max_output_tokens",
            "reducedParallelism": "reduced_parallelism",
            "conservativeTokens": "conservative_tokens",
        }
        allowed = set(aliases.values())
        values: dict[str, Any] = {}
        for key, value in payload.items():
            name = aliases.get(key, key)
            if name in allowed and value is not None:
                values[name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_concurrent_tools": self.max_concurrent_tools,
            "max_tools_per_iteration": self.max_tools_per_iteration,
            "max_output_tokens": self.max_output_tokens,
            "reduced_parallelism": self.reduced_parallelism,
            "conservative_tokens": self.conservative_tokens,
        }


@dataclass(slots=True, frozen=True)
class SessionState:
    """Continuation state for adapters that do not resend the transcript.

    Attributes:
        previous_turn_id: Backend-issued id of the last completed turn.
        pending_items: Delta input items for the next turn.
    """

    previous_turn_id: str | None = None
    pending_items: tuple[Mapping[str, Any], ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.pending_items, tuple):
            object.__setattr__(self, "pending_items", tuple(self.pending_items))

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_items)

    def with_pending(self, items: Sequence[Mapping[str, Any]]) -> SessionState:
        return SessionState(previous_turn_id=self.previous_turn_id, pending_items=tuple(items))


@dataclass(slots=True, frozen=True)
class TurnResult:
    """Outcome of one adapter turn.

    Attributes:
        text: Assistant text for the turn.
        tool_calls: Tool calls requested by the model.
        session_state: Continuation state for the next turn (``None`` when stateless).
        usage_tokens: Tokens reported by the provider for this turn.
        orphans_dropped: Tool results stripped before transmission.
    """

    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    session_state: SessionState | None = None
    usage_tokens: int = 0
    orphans_dropped: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def has_tool_calls(self) -> bool:
        """Check if the turn requested tools."""
        return len(self.tool_calls) > 0

    def to_message(self) -> Message:
        """Convert the turn to an assistant Message."""
        return Message.assistant(self.text, tool_calls=self.tool_calls or None)


# -----------------------------------------------------------------------------
# Run Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PendingEdit:
    """Edit proposal collected from a ``queue_edit`` tool result."""

    file_path: str
    instructions: str = ""
    patch: Any = None

    @classmethod
    def from_result(cls, result: Mapping[str, Any]) -> PendingEdit:
        file_path = result.get("file_path") or result.get("filePath") or ""
        patch = result.get("code_edit")
        if patch is None:
            patch = result.get("patch")
        return cls(
            file_path=str(file_path),
            instructions=str(result.get("instructions") or ""),
            patch=patch,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"filePath": self.file_path, "instructions": self.instructions, "patch": self.patch}


@dataclass(slots=True, frozen=True)
class RunParams:
    """Inputs for one agent run.

    Attributes:
        model: Model id, optionally ``provider/``-prefixed.
        message: The user's request.
        system_prompt: Prebuilt system prompt; built from context when ``None``.
        selection: Selected editor text.
        document: Full content of the active document.
        file_name: Name of the active document.
        language: Language of the active document.
        current_folder: Workspace folder shown to the model.
        file_tree: Preformatted project structure listing.
        open_files: Other open editor files.
        history: Prior conversation entries (user/assistant only are kept).
        summary: Summary of the earlier conversation.
        knowledge_context: Knowledge-base block appended verbatim to the system prompt.
        allowed_tools: Optional allow-list of tool names.
        terminal_enabled: When False, terminal tools are removed.
        provider_name: Display name used in the model identity header.
    """

    model: str
    message: str
    system_prompt: str | None = None
    selection: str | None = None
    document: str | None = None
    file_name: str | None = None
    language: str | None = None
    current_folder: str | None = None
    file_tree: str | None = None
    open_files: tuple[OpenFile, ...] = ()
    history: tuple[Mapping[str, Any] | Message, ...] = ()
    summary: str | None = None
    knowledge_context: str | None = None
    allowed_tools: tuple[str, ...] | None = None
    terminal_enabled: bool = False
    provider_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.open_files, tuple):
            object.__setattr__(
                self, "open_files", tuple(OpenFile.from_value(item) for item in self.open_files)
            )
        if not isinstance(self.history, tuple):
            object.__setattr__(self, "history", tuple(self.history))
        if self.allowed_tools is not None and not isinstance(self.allowed_tools, tuple):
            object.__setattr__(self, "allowed_tools", tuple(self.allowed_tools))


@dataclass(slots=True, frozen=True)
class RunResult:
    """Outcome of a complete run.

    Attributes:
        success: Whether the model finished without tool calls.
        response_text: Final assistant text.
        tokens_used: Sum of provider-reported usage across turns.
        iterations: Iterations started (never above the configured cap).
        pending_edits: Edit proposals collected during the run.
        error: Error message for failed runs.
        error_kind: Taxonomy kind of the failure.
        skipped_tool_calls: Calls skipped by the per-iteration limit.
    """

    success: bool
    response_text: str = ""
    tokens_used: int = 0
    iterations: int = 0
    pending_edits: tuple[PendingEdit, ...] = ()
    error: str | None = None
    error_kind: str | None = None
    skipped_tool_calls: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.pending_edits, tuple):
            object.__setattr__(self, "pending_edits", tuple(self.pending_edits))

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the camelCase keys clients expect."""
        payload: dict[str, Any] = {
            "success": self.success,
            "responseText": self.response_text,
            "tokensUsed": self.tokens_used,
            "iterations": self.iterations,
            "pendingEdits": [edit.to_dict() for edit in self.pending_edits],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload
