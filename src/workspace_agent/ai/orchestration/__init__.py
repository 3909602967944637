"""Iteration engine and the pieces it is built from."""

# Core types
from .types import (
    IMAGE_CONTEXT_TAG,
    Message,
    OpenFile,
    PendingEdit,
    PerformanceHints,
    RunParams,
    RunResult,
    SessionState,
    ToolCall,
    TurnResult,
)

# Tool call parsing
from .tool_call_parser import parse_arguments, parse_text_tool_calls, strip_text_tool_calls

# Context building and trimming
from .context import (
    build_messages,
    estimate_message_tokens,
    prune_ephemeral_messages,
    smart_truncate,
    strip_orphan_tool_results,
    trim_messages,
)
from .sanitizer import sanitize, serialize_tool_result
from .events import AgentEvent, EventSink, EventType, SafeEventSink

# Dispatch and the loop
from .dispatch import BatchResult, ToolDispatcher, ToolOutcome
from .engine import EngineConfig, IterationEngine, run

__all__ = [
    "IMAGE_CONTEXT_TAG",
    "Message",
    "OpenFile",
    "PendingEdit",
    "PerformanceHints",
    "RunParams",
    "RunResult",
    "SessionState",
    "ToolCall",
    "TurnResult",
    "parse_arguments",
    "parse_text_tool_calls",
    "strip_text_tool_calls",
    "build_messages",
    "estimate_message_tokens",
    "prune_ephemeral_messages",
    "smart_truncate",
    "strip_orphan_tool_results",
    "trim_messages",
    "sanitize",
    "serialize_tool_result",
    "AgentEvent",
    "EventSink",
    "EventType",
    "SafeEventSink",
    "BatchResult",
    "ToolDispatcher",
    "ToolOutcome",
    "EngineConfig",
    "IterationEngine",
    "run",
]
