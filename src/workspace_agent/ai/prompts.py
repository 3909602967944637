"""Prompt templates for the workspace agent.

Provides the base system prompt and the helpers that decorate it with the
current editor context and an optional knowledge-base block.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .orchestration.types import RunParams

__all__ = [
    "system_prompt",
    "build_system_prompt",
    "append_knowledge_context",
]

_EDIT_REQUEST_RE = re.compile(r"improve|fix|rewrite|change|update|edit|modify|enhance", re.IGNORECASE)


def system_prompt(
    *,
    provider_name: str | None = None,
    model_name: str | None = None,
    file_name: str | None = None,
    language: str | None = None,
    current_folder: str | None = None,
    selection: str | None = None,
    document: str | None = None,
    file_tree: str | None = None,
    message: str | None = None,
    terminal_enabled: bool = False,
) -> str:
    """Generate the system prompt for an agent run."""
    sections = [
        _identity_section(provider_name, model_name),
        _mindset_section(),
        _context_section(file_name, language, current_folder, selection, document),
        f"## Project Structure\n{file_tree or 'Use list_directory to explore'}",
        _tools_section(terminal_enabled),
        _mode_section(message, has_selection=bool(selection), current_folder=current_folder),
        _guidelines_section(),
    ]
    return "\n\n".join(section.strip() for section in sections if section)


def build_system_prompt(params: RunParams, *, provider_name: str | None = None) -> str:
    """Build the system prompt for ``params``.

    A prebuilt ``params.system_prompt`` wins over the generated one. The
    knowledge-base block, when present, is appended verbatim either way.
    """
    if params.system_prompt:
        base = params.system_prompt
    else:
        base = system_prompt(
            provider_name=params.provider_name or provider_name,
            model_name=params.model,
            file_name=params.file_name,
            language=params.language,
            current_folder=params.current_folder,
            selection=params.selection,
            document=params.document,
            file_tree=params.file_tree,
            message=params.message,
            terminal_enabled=params.terminal_enabled,
        )
    return append_knowledge_context(base, params.knowledge_context)


def append_knowledge_context(prompt: str, knowledge_context: str | None) -> str:
    """Append an opaque knowledge-base block without altering it."""
    if not knowledge_context:
        return prompt
    return prompt + knowledge_context


def _identity_section(provider_name: str | None, model_name: str | None) -> str:
    """Model identity header, kept so provider switching stays coherent."""
    return f"""You are an AI coding assistant working inside a workspace editor. You are an autonomous agent: explore thoroughly, understand deeply, then act.

## Model Identity (important)

- **Provider**: {provider_name or 'unknown'}
- **Model**: {model_name or 'unknown'}

If the user asks what model or provider you are, answer using the values above.
Do **not** claim to be a different assistant or model."""


def _mindset_section() -> str:
    return """## Agent Mindset

- Keep going until the request is completely solved
- Explore before acting; never assume project structure
- Use several tools in parallel when they do not depend on each other
- Show what you found before proposing changes"""


def _context_section(
    file_name: str | None,
    language: str | None,
    current_folder: str | None,
    selection: str | None,
    document: str | None,
) -> str:
    lines = [
        "## Current Context",
        "",
        f"**File**: {file_name or 'untitled'}",
        f"**Language**: {language or 'text'}",
        f"**Folder**: {current_folder or '.'}",
    ]
    if selection:
        lines.append(f"**Selection**: {len(selection)} chars selected")
    if document:
        lines.append(f"**Document**: {len(document)} chars loaded")
    return "\n".join(lines)


def _tools_section(terminal_enabled: bool) -> str:
    text = """## Your Tools

- **file_read** - Read any file before editing or analyzing it
- **read_image** - View image files (png, jpg, gif, webp)
- **list_directory** - List directory contents to understand structure
- **codebase_search** - Semantic search by meaning
- **grep_search** - Exact text or pattern search
- **edit_file_range** / **search_replace** - Preferred surgical edits
- **insert_lines** / **delete_lines** - Line-level edits
- **edit_file** - Complete rewrites only; provide the full new content
- **create_file** - Create files using paths relative to the current folder
- **delete_file** - Delete files or directories; use carefully

Edits are queued for the user to review in a diff viewer; they are not applied immediately."""
    if terminal_enabled:
        text += """

### Terminal
- **terminal_open** / **terminal_write** / **terminal_wait** - Drive a PTY session
- **terminal_resize** / **terminal_close** / **terminal_list** - Manage sessions
- **run_terminal** - One-shot command execution"""
    return text


def _mode_section(message: str | None, *, has_selection: bool, current_folder: str | None) -> str:
    lowered = (message or "").lower()
    if has_selection and _EDIT_REQUEST_RE.search(lowered):
        return """## Operating Mode: Edit

The user selected text for improvement. Read surrounding context if needed,
plan minimal changes and prefer search_replace or edit_file_range."""
    if "create" in lowered and "file" in lowered:
        return f"""## Operating Mode: File Creation

Explore the existing structure and match project conventions before creating.
Current folder: {current_folder or '.'}
Use relative paths."""
    return """## Operating Mode: General

Explore first using tools, then respond with evidence."""


def _guidelines_section() -> str:
    return """## Guidelines

- Match the project's existing style, discovered through exploration
- Include necessary imports and produce runnable code
- Explain what you explored and what you found
- When asked to edit, do so precisely; otherwise wait for direction"""
