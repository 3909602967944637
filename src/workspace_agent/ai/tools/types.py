"""Tool contract types.

Concrete tools live with the host; the engine only sees their specifications
and a :class:`ToolExecutor` that runs them under the host's security boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

__all__ = [
    "ToolCategory",
    "ToolSpec",
    "ToolExecutor",
    "TERMINAL_TOOL_NAMES",
    "infer_category",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories used by category policies."""

    READ = "read"
    WRITE = "write"
    SEARCH = "search"
    TERMINAL = "terminal"
    MEDIA = "media"
    DOCUMENT = "document"
    KNOWLEDGE = "knowledge"
    UTILITY = "utility"


TERMINAL_TOOL_NAMES: frozenset[str] = frozenset(
    {
        "run_terminal",
        "terminal_open",
        "terminal_write",
        "terminal_wait",
        "terminal_resize",
        "terminal_close",
        "terminal_list",
    }
)

_CATEGORY_BY_NAME: Mapping[str, str] = {
    "file_read": ToolCategory.READ,
    "list_directory": ToolCategory.READ,
    "read_image": ToolCategory.MEDIA,
    "create_image": ToolCategory.MEDIA,
    "edit_image": ToolCategory.MEDIA,
    "grep_search": ToolCategory.SEARCH,
    "codebase_search": ToolCategory.SEARCH,
    "brain_search": ToolCategory.KNOWLEDGE,
    "create_file": ToolCategory.WRITE,
    "edit_file": ToolCategory.WRITE,
    "edit_file_range": ToolCategory.WRITE,
    "search_replace": ToolCategory.WRITE,
    "insert_lines": ToolCategory.WRITE,
    "delete_lines": ToolCategory.WRITE,
    "write_file": ToolCategory.WRITE,
    "delete_file": ToolCategory.WRITE,
    "create_docx": ToolCategory.DOCUMENT,
    "create_xlsx": ToolCategory.DOCUMENT,
}


def infer_category(name: str) -> str:
    """Best guess of a tool's category from its name."""
    if name in TERMINAL_TOOL_NAMES:
        return ToolCategory.TERMINAL
    return _CATEGORY_BY_NAME.get(name, ToolCategory.UTILITY)


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
        category: Tool category for policy filtering.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: str = ToolCategory.UTILITY

    @property
    def schema(self) -> dict[str, Any]:
        if self.parameters:
            return dict(self.parameters)
        return {"type": "object", "properties": {}}

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to the chat-completions tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema,
            },
        }

    def to_responses_tool(self, *, strict: bool = True) -> dict[str, Any]:
        """Convert to the Responses API function tool format."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description or None,
            "parameters": self.schema,
            "strict": strict,
        }

    def to_anthropic_tool(self) -> dict[str, Any]:
        """Convert to the Anthropic messages tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.schema,
        }

    @classmethod
    def from_definition(cls, definition: ToolSpec | Mapping[str, Any]) -> ToolSpec:
        """Accept a spec, a chat-completions tool dict, or a flat ``{name, ...}`` dict."""
        if isinstance(definition, ToolSpec):
            return definition
        payload: Mapping[str, Any] = definition
        function = definition.get("function")
        if isinstance(function, Mapping):
            payload = function
        name = str(payload.get("name") or "")
        if not name:
            raise ValueError("Tool definition is missing a name")
        parameters = payload.get("parameters") or payload.get("parameterSchema") or payload.get("input_schema") or {}
        category = definition.get("category") or payload.get("category") or infer_category(name)
        return cls(
            name=name,
            description=str(payload.get("description") or ""),
            parameters=dict(parameters),
            category=str(category),
        )


# -----------------------------------------------------------------------------
# Executor Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolExecutor(Protocol):
    """Protocol for host tool execution.

    Implementations should return ``{"error": message}`` rather than raise;
    the engine still isolates any exception to the failing call.
    """

    async def execute(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Execute a tool by name with arguments.

        Args:
            name: Name of the tool to execute.
            arguments: Parsed arguments for the tool.

        Returns:
            Any JSON-able value, ``{"error": ...}``, an image payload or a
            ``queue_edit`` proposal.
        """
        ...
