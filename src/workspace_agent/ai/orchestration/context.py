"""Context assembly and trimming.

This module builds the bounded initial message list for a run and keeps the
transcript under the context ceiling between iterations. Every function is
pure: inputs are never mutated and no I/O is performed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Sequence

from ..errors import OrphanResultError
from ..utils.tokens import CHARS_PER_TOKEN, estimate_content_tokens, estimate_tokens
from .types import Message, OpenFile

__all__ = [
    "DEFAULT_CONTEXT_TOKENS",
    "TRUNCATION_MARKER",
    "smart_truncate",
    "truncate_system_prompt",
    "format_open_files",
    "format_summary",
    "sanitize_history",
    "format_user_turn",
    "build_messages",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "trim_messages",
    "strip_orphan_tool_results",
    "prune_ephemeral_messages",
]

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Limits
# -----------------------------------------------------------------------------

DEFAULT_CONTEXT_TOKENS = 200_000
SYSTEM_PROMPT_TOKEN_LIMIT = 20_000
SYSTEM_PROMPT_CHAR_LIMIT = 80_000
MAX_OPEN_FILES = 10
OPEN_FILE_CHAR_LIMIT = 45_000
HISTORY_CHAR_LIMIT = 12_000
HISTORY_DATA_URL_CHAR_LIMIT = 20_000
SELECTION_CHAR_LIMIT = 50_000
DOCUMENT_CHAR_LIMIT = 50_000
TOOL_RESULT_TOKEN_LIMIT = 5_000
TOOL_RESULT_CHAR_LIMIT = 75_000
KEEP_RECENT_MESSAGES = 18
PROTECTED_TAIL = 2

TRUNCATION_MARKER = "[...truncated...]"
SYSTEM_TRUNCATION_NOTE = "\n\n[...truncated for token limit...]"
HISTORY_TRUNCATION_NOTE = "\n\n[...truncated history...]"
DATA_URL_TRUNCATION_NOTE = "\n\n[...truncated data URL...]"
SELECTION_TRUNCATION_NOTE = "\n\n[...truncated...]"


# -----------------------------------------------------------------------------
# Truncation Helpers
# -----------------------------------------------------------------------------


def smart_truncate(text: str, max_length: int = TOOL_RESULT_CHAR_LIMIT) -> str:
    """Shorten ``text`` to ``max_length`` chars keeping its head and tail.

    60% of the available space goes to the beginning (imports, declarations)
    and 40% to the end (recent output, conclusions), joined by
    ``[...truncated...]``.

    Args:
        text: The text to shorten.
        max_length: Maximum length of the result.

    Returns:
        ``text`` unchanged when it already fits, otherwise the head/tail splice.
    """
    if not text or len(text) <= max_length:
        return text
    indicator = f"\n\n{TRUNCATION_MARKER}\n\n"
    available = max_length - len(indicator)
    if available <= 0:
        return text[:max_length]
    head = int(available * 0.6)
    tail = available - head
    return text[:head] + indicator + (text[-tail:] if tail else "")


def truncate_system_prompt(text: str) -> str:
    """Cap an oversized system prompt, appending a marker."""
    if estimate_tokens(text) <= SYSTEM_PROMPT_TOKEN_LIMIT:
        return text
    return text[:SYSTEM_PROMPT_CHAR_LIMIT] + SYSTEM_TRUNCATION_NOTE


def _clip(text: str, limit: int, note: str) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + note


# -----------------------------------------------------------------------------
# Message Building
# -----------------------------------------------------------------------------


def format_open_files(open_files: Iterable[OpenFile | Mapping[str, Any]]) -> str | None:
    """Render up to ten open files as a single context block."""
    entries = [OpenFile.from_value(item) for item in open_files]
    if not entries:
        return None
    if len(entries) > MAX_OPEN_FILES:
        LOGGER.debug("Limiting open files context from %d to %d", len(entries), MAX_OPEN_FILES)
    blocks = [
        f"{entry.path}:\n```\n{smart_truncate(entry.content, OPEN_FILE_CHAR_LIMIT)}\n```"
        for entry in entries[:MAX_OPEN_FILES]
    ]
    return "Open Files:\n" + "\n\n".join(blocks)


def format_summary(summary: str | None) -> str | None:
    """Wrap a prior-conversation summary for inclusion as a system message."""
    if not summary or not summary.strip():
        return None
    return (
        "## Previous Conversation Summary\n"
        "The following is a summary of the earlier conversation for context:\n\n"
        f"{summary}\n\n---\nRecent messages follow below."
    )


def sanitize_history(history: Iterable[Mapping[str, Any] | Message]) -> tuple[Message, ...]:
    """Keep user/assistant text entries, capping each one.

    Entries with embedded image data URLs are cut to 20000 chars first; every
    entry is then capped at 12000 chars.
    """
    cleaned: list[Message] = []
    for entry in history:
        if isinstance(entry, Message):
            role, content = entry.role, entry.content
        elif isinstance(entry, Mapping):
            role, content = entry.get("role"), entry.get("content")
        else:
            continue
        if role not in ("user", "assistant"):
            continue
        if not isinstance(content, str) or not content.strip():
            continue
        if "data:image" in content:
            content = _clip(content, HISTORY_DATA_URL_CHAR_LIMIT, DATA_URL_TRUNCATION_NOTE)
        content = _clip(content, HISTORY_CHAR_LIMIT, HISTORY_TRUNCATION_NOTE)
        cleaned.append(Message(role=role, content=content))
    return tuple(cleaned)


def format_user_turn(
    message: str,
    *,
    selection: str | None = None,
    document: str | None = None,
) -> str:
    """Prefix the user's request with the selection or the active document."""
    if selection:
        trimmed = _clip(selection, SELECTION_CHAR_LIMIT, SELECTION_TRUNCATION_NOTE)
        return f"Selected:\n---\n{trimmed}\n---\n\nRequest: {message}"
    if document and len(document) < DOCUMENT_CHAR_LIMIT:
        return f"Current document:\n---\n{document}\n---\n\nRequest: {message}"
    if document:
        return f"[Current document: {len(document)} chars - too large to include]\n\nRequest: {message}"
    return message


def build_messages(
    system_prompt: str,
    user_message: str,
    *,
    open_files: Sequence[OpenFile | Mapping[str, Any]] = (),
    summary: str | None = None,
    history: Sequence[Mapping[str, Any] | Message] = (),
    selection: str | None = None,
    document: str | None = None,
) -> tuple[Message, ...]:
    """Assemble the initial message list for a run.

    Args:
        system_prompt: Full system prompt (already including any knowledge block).
        user_message: The user's request.
        open_files: Other open editor files.
        summary: Summary of the earlier conversation.
        history: Prior conversation entries.
        selection: Selected editor text; takes precedence over ``document``.
        document: Content of the active document.

    Returns:
        Tuple of messages: system prompt, optional open files, optional
        summary, history, then the user turn.
    """
    messages: list[Message] = [Message.system(truncate_system_prompt(system_prompt))]

    open_files_block = format_open_files(open_files)
    if open_files_block:
        messages.append(Message.system(open_files_block))

    summary_block = format_summary(summary)
    if summary_block:
        messages.append(Message.system(summary_block))

    messages.extend(sanitize_history(history))
    messages.append(Message.user(format_user_turn(user_message, selection=selection, document=document)))
    return tuple(messages)


# -----------------------------------------------------------------------------
# Token Estimation
# -----------------------------------------------------------------------------


def estimate_message_tokens(message: Message) -> int:
    """Estimate tokens for one message, including serialized tool calls."""
    tokens = estimate_content_tokens(message.content)
    if message.tool_calls:
        tokens += sum(estimate_tokens(call.name) + estimate_tokens(call.arguments) for call in message.tool_calls)
    return tokens


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    return sum(estimate_message_tokens(message) for message in messages)


# -----------------------------------------------------------------------------
# Trimming
# -----------------------------------------------------------------------------


def trim_messages(
    messages: Sequence[Message],
    max_tokens: int = DEFAULT_CONTEXT_TOKENS,
    *,
    keep_recent: int = KEEP_RECENT_MESSAGES,
    tool_result_token_limit: int = TOOL_RESULT_TOKEN_LIMIT,
) -> tuple[Message, ...]:
    """Bound the transcript to ``max_tokens`` estimated tokens.

    Messages already under the ceiling are returned unchanged. Otherwise:

    1. System messages are kept (oversized ones truncated).
    2. Only the last ``keep_recent`` non-system messages are kept.
    3. Older tool results above ``tool_result_token_limit`` are shrunk:
       embedded base64 ``data`` is replaced by a note and long ``content``
       fields are smart-truncated.
    4. If still over, the oldest unprotected messages are dropped, then
       secondary system blocks and finally the system prompt are shortened.

    The last two messages and the two most recent tool results are never
    truncated or dropped.
    """
    current = estimate_messages_tokens(messages)
    if current <= max_tokens:
        return tuple(messages)

    LOGGER.info("Trimming context: %d estimated tokens, target %d", current, max_tokens)

    systems = [_trim_system(message) for message in messages if message.role == "system"]
    conversation = [message for message in messages if message.role != "system"]
    if keep_recent > 0:
        conversation = conversation[-keep_recent:]
    conversation = _drop_leading_orphans(conversation)

    untouchable = _untouchable_indices(conversation)
    for index, message in enumerate(conversation):
        if index in untouchable or message.role != "tool":
            continue
        if estimate_message_tokens(message) > tool_result_token_limit:
            conversation[index] = message.with_content(_shrink_tool_content(message.text))

    total = estimate_messages_tokens(systems) + estimate_messages_tokens(conversation)
    while total > max_tokens and _protected_start(conversation) > 0:
        conversation = _drop_leading_orphans(conversation[1:])
        total = estimate_messages_tokens(systems) + estimate_messages_tokens(conversation)

    if total > max_tokens:
        systems = _shrink_systems(systems, total - max_tokens)
        total = estimate_messages_tokens(systems) + estimate_messages_tokens(conversation)

    if total > max_tokens:
        LOGGER.warning(
            "Context still %d tokens after trimming (target %d); protected tail is oversized",
            total,
            max_tokens,
        )
    else:
        LOGGER.info("Trimmed context to %d estimated tokens", total)
    return tuple(systems) + tuple(conversation)


def _trim_system(message: Message) -> Message:
    trimmed = truncate_system_prompt(message.text)
    return message if trimmed == message.content else message.with_content(trimmed)


def _untouchable_indices(conversation: Sequence[Message]) -> set[int]:
    """Indices that must never be truncated: the tail and the latest tool results."""
    protected = set(range(max(0, len(conversation) - PROTECTED_TAIL), len(conversation)))
    tool_indices = [index for index, message in enumerate(conversation) if message.role == "tool"]
    protected.update(tool_indices[-PROTECTED_TAIL:])
    return protected


def _protected_start(conversation: Sequence[Message]) -> int:
    """First index that must survive dropping, including the issuing assistant turn."""
    untouchable = _untouchable_indices(conversation)
    if not untouchable:
        return len(conversation)
    start = min(untouchable)
    if conversation[start].role == "tool":
        for index in range(start - 1, -1, -1):
            if conversation[index].role == "assistant":
                return index
    return start


def _drop_leading_orphans(conversation: Sequence[Message]) -> list[Message]:
    start = 0
    while start < len(conversation) and conversation[start].role == "tool":
        start += 1
    if start:
        LOGGER.debug("Dropped %d tool result(s) whose call was trimmed away", start)
    return list(conversation[start:])


def _shrink_tool_content(content: str) -> str:
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        return smart_truncate(content, TOOL_RESULT_CHAR_LIMIT)
    if not isinstance(parsed, dict):
        return smart_truncate(content, TOOL_RESULT_CHAR_LIMIT)
    data = parsed.get("data")
    if isinstance(data, str) and data:
        parsed["data"] = f"[...omitted base64 ({len(data)} chars)...]"
    body = parsed.get("content")
    if isinstance(body, str) and len(body) > TOOL_RESULT_CHAR_LIMIT:
        parsed["content"] = smart_truncate(body, TOOL_RESULT_CHAR_LIMIT)
    return json.dumps(parsed, ensure_ascii=False)


def _shrink_systems(systems: Sequence[Message], excess_tokens: int) -> list[Message]:
    result = list(systems)
    # Secondary blocks (open files, summary) go first; the primary prompt last.
    for index in range(len(result) - 1, -1, -1):
        if excess_tokens <= 0:
            break
        text = result[index].text
        current = estimate_tokens(text)
        target_chars = max(0, len(text) - (excess_tokens + 1) * CHARS_PER_TOKEN)
        shortened = smart_truncate(text, target_chars) if target_chars else ""
        result[index] = result[index].with_content(shortened)
        excess_tokens -= current - estimate_tokens(shortened)
    return [message for message in result if message.text or message is result[0]]


# -----------------------------------------------------------------------------
# Transcript Hygiene
# -----------------------------------------------------------------------------


def strip_orphan_tool_results(messages: Sequence[Message]) -> tuple[tuple[Message, ...], int]:
    """Drop tool results whose call id is absent from the preceding assistant turn.

    Returns:
        The filtered messages and the number of results dropped.
    """
    kept: list[Message] = []
    dropped = 0
    active_ids: set[str] = set()
    for message in messages:
        if message.role == "assistant":
            active_ids = {call.call_id for call in message.tool_calls or ()}
        elif message.role == "tool":
            if not message.tool_call_id or message.tool_call_id not in active_ids:
                dropped += 1
                error = OrphanResultError(
                    message=f"Skipping orphaned tool result with id: {message.tool_call_id}",
                    tool_call_id=message.tool_call_id or "",
                )
                LOGGER.warning("%s", error.message)
                continue
        kept.append(message)
    if dropped:
        LOGGER.info("Cleaned %d orphaned tool result(s) from message history", dropped)
    return tuple(kept), dropped


def prune_ephemeral_messages(messages: Sequence[Message], epoch: int) -> tuple[Message, ...]:
    """Keep ephemeral entries from the current and immediately prior epoch only."""
    return tuple(
        message
        for message in messages
        if not message.is_ephemeral or message.epoch is None or message.epoch >= epoch - 1
    )
