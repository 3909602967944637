"""One-line human summaries for ``tool_result`` events."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = ["summarize_tool_result"]


def _arg(args: Mapping[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = args.get(key)
        if value not in (None, ""):
            return str(value)
    return default


def _terminal_summary(name: str, args: Mapping[str, Any], result: Mapping[str, Any]) -> str | None:
    session = _arg(result, "session_id") or _arg(args, "session_id", default="session")
    if name == "run_terminal":
        command = _arg(args, "command")[:40]
        exit_code = result.get("exitCode", result.get("exit_code"))
        exit_text = str(exit_code) if isinstance(exit_code, int) and not isinstance(exit_code, bool) else "?"
        status = "ok" if result.get("success") else "failed"
        return f"Terminal {status} (exit {exit_text}): {command}"
    if name == "terminal_open":
        return f"Terminal opened: {_arg(result, 'session_id', default='session')}"
    if name == "terminal_write":
        return f"Terminal input sent: {session}"
    if name == "terminal_wait":
        if result.get("timed_out"):
            status = "timeout"
        elif result.get("matched"):
            status = "matched"
        elif result.get("exited"):
            status = "exited"
        else:
            status = "ok"
        return f"Terminal wait ({status}): {session}"
    if name == "terminal_resize":
        cols = result.get("cols") or args.get("cols")
        rows = result.get("rows") or args.get("rows")
        return f"Terminal resized: {cols}x{rows}"
    if name == "terminal_close":
        return f"Terminal closed: {session}"
    if name == "terminal_list":
        return f"{result.get('count') or 0} terminal session(s)"
    return None


def summarize_tool_result(name: str, args: Mapping[str, Any] | None, result: Any) -> str:
    """Describe a tool result in one short line for progress displays.

    Args:
        name: Tool name.
        args: Parsed arguments the tool was called with.
        result: Raw (unsanitized) tool result.

    Returns:
        Text such as ``"Error: ..."``, ``"Edited: src/app.py"`` or ``"Success"``.
    """
    args = args or {}
    if not isinstance(result, Mapping):
        if isinstance(result, (list, tuple)):
            return f"{len(result)} items"
        return "Success"

    if result.get("error"):
        return f"Error: {result['error']}"
    if result.get("action") == "queue_edit":
        path = _arg(result, "file_path", "filePath", default="file")
        return f"Edit queued: {path}"

    file_path = _arg(args, "file_path", "path", default="file")
    if name in ("file_read", "read_image"):
        content = result.get("content")
        if isinstance(content, str) and content:
            return f"{file_path} ({len(content) / 1024:.1f}KB)"
        return file_path
    if name == "create_file":
        return f"Created: {file_path}"
    if name in ("edit_file", "search_replace"):
        return f"Edited: {file_path}"
    if name == "list_directory":
        entries = result.get("files") or result.get("items") or []
        directory = _arg(args, "directory_path", "path", default="directory")
        return f"{len(entries)} items in {directory}"
    if name in ("grep_search", "codebase_search"):
        found = result.get("results") or result.get("matches") or []
        count = len(found) if isinstance(found, (list, tuple)) else 0
        query = _arg(args, "query", "pattern")[:30]
        return f'{count} match{"" if count == 1 else "es"} for "{query}"'

    terminal = _terminal_summary(name, args, result)
    if terminal is not None:
        return terminal

    if name == "delete_file":
        return f"Deleted: {file_path}"
    files = result.get("files")
    if isinstance(files, (list, tuple)):
        return f"{len(files)} items"
    return "Success"
