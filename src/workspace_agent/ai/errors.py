"""Error taxonomy for agent runs.

Only :class:`TransportError` is allowed to escape a provider adapter; the
iteration engine converts it into a failed :class:`RunResult`. Every other
kind is handled where it occurs (argument repair, per-call tool isolation,
orphan stripping, serialization stand-ins) and only surfaces as a logged
event or as the ``error_kind`` of a finished run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorKind",
    "AgentError",
    "TransportError",
    "ArgumentParseError",
    "ToolExecutionError",
    "OrphanResultError",
    "SerializationError",
    "IterationBudgetExceeded",
    "RunCancelled",
]


# -----------------------------------------------------------------------------
# Error Kinds
# -----------------------------------------------------------------------------


class ErrorKind:
    """Machine-readable identifiers for each failure class."""

    TRANSPORT = "transport"
    ARGUMENT_PARSE = "argument_parse"
    TOOL_EXECUTION = "tool_execution"
    ORPHAN_RESULT = "orphan_result"
    SERIALIZATION = "serialization"
    ITERATION_BUDGET = "iteration_budget_exceeded"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class AgentError(Exception):
    """Base exception for agent run failures.

    Attributes:
        message: Human-readable description.
        details: Additional structured information.
    """

    message: str
    details: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = ErrorKind.INTERNAL

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for events and run results."""
        result: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


# -----------------------------------------------------------------------------
# Concrete Errors
# -----------------------------------------------------------------------------


@dataclass
class TransportError(AgentError):
    """Adapter or network level failure; aborts the run without retry."""

    provider: str = ""
    status_code: int | None = None

    kind: ClassVar[str] = ErrorKind.TRANSPORT

    def to_dict(self) -> dict[str, Any]:
        result = AgentError.to_dict(self)
        if self.provider:
            result["provider"] = self.provider
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class ArgumentParseError(AgentError):
    """Tool-call arguments that are not a JSON object."""

    raw_arguments: str = ""

    kind: ClassVar[str] = ErrorKind.ARGUMENT_PARSE


@dataclass
class ToolExecutionError(AgentError):
    """A tool raised instead of returning ``{"error": ...}``."""

    tool_name: str = ""

    kind: ClassVar[str] = ErrorKind.TOOL_EXECUTION


@dataclass
class OrphanResultError(AgentError):
    """A tool result whose call id has no matching call in the transcript."""

    tool_call_id: str = ""

    kind: ClassVar[str] = ErrorKind.ORPHAN_RESULT


@dataclass
class SerializationError(AgentError):
    """A tool result that could not be rendered as JSON."""

    result_type: str = ""

    kind: ClassVar[str] = ErrorKind.SERIALIZATION


@dataclass
class IterationBudgetExceeded(AgentError):
    """The run reached its iteration cap while the model still requested tools."""

    max_iterations: int = 0

    kind: ClassVar[str] = ErrorKind.ITERATION_BUDGET


@dataclass
class RunCancelled(AgentError):
    """The caller signalled cancellation while the run was in flight."""

    kind: ClassVar[str] = ErrorKind.CANCELLED
