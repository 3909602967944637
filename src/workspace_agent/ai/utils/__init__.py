"""Shared helpers for the AI layer."""

from .tokens import CHARS_PER_TOKEN, estimate_content_tokens, estimate_tokens

__all__ = ["CHARS_PER_TOKEN", "estimate_tokens", "estimate_content_tokens"]
