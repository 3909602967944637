"""Structured logging helpers for the workspace agent."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any

__all__ = [
    "setup_logging",
    "get_logger",
    "get_log_path",
    "resolve_log_level",
    "log_payload",
]

_DEFAULT_LOG_DIR = Path.home() / ".workspace_agent" / "logs"
_LOG_DIR_ENV = "WORKSPACE_AGENT_LOG_DIR"
_LOG_LEVEL_ENV = "WORKSPACE_AGENT_LOG_LEVEL"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai", "anthropic")
_PAYLOAD_PREVIEW_CHARS = 2_000
_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    debug: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating log file and optional console output.

    Args:
        level: Explicit level (name or number). Falls back to
            ``WORKSPACE_AGENT_LOG_LEVEL`` and then INFO.
        log_dir: Directory for ``workspace_agent.log``. Falls back to
            ``WORKSPACE_AGENT_LOG_DIR`` and then ``~/.workspace_agent/logs``.
        console: Whether to also log to stderr.
        debug: Forces DEBUG regardless of ``level``.
        max_bytes: Rotation threshold for the log file.
        backup_count: Rotated files to keep.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    resolved_level = logging.DEBUG if debug else resolve_log_level(level)
    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "workspace_agent.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(resolved_level)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(resolved_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def resolve_log_level(level: int | str | None = None) -> int:
    """Translate a level name/number (or the environment override) to a logging level."""

    candidate: int | str | None = level if level is not None else os.environ.get(_LOG_LEVEL_ENV)
    if candidate is None or candidate == "":
        return logging.INFO
    if isinstance(candidate, int):
        return candidate
    text = str(candidate).strip()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def log_payload(
    logger: logging.Logger,
    label: str,
    payload: Any,
    *,
    limit: int = _PAYLOAD_PREVIEW_CHARS,
) -> None:
    """Log a request/response payload at DEBUG, clipped to ``limit`` characters."""

    if not logger.isEnabledFor(logging.DEBUG):
        return
    try:
        serialized = json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        serialized = repr(payload)
    if len(serialized) > limit:
        serialized = f"{serialized[:limit]}... ({len(serialized)} chars)"
    logger.debug("%s: %s", label, serialized)


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get(_LOG_DIR_ENV)
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
