"""Tool contracts shared by the engine and its hosts."""

from .catalog import DuplicateToolError, ToolCatalog, ToolNotFoundError, filter_tool_specs
from .summaries import summarize_tool_result
from .types import TERMINAL_TOOL_NAMES, ToolCategory, ToolExecutor, ToolSpec, infer_category

__all__ = [
    "ToolCategory",
    "ToolSpec",
    "ToolExecutor",
    "TERMINAL_TOOL_NAMES",
    "infer_category",
    "ToolCatalog",
    "DuplicateToolError",
    "ToolNotFoundError",
    "filter_tool_specs",
    "summarize_tool_result",
]
