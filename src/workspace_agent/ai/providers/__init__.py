"""Provider adapters, one per backend protocol family."""

from .anthropic import AnthropicAdapter, to_anthropic_messages
from .base import EventCallback, ProviderAdapter, ProviderCapabilities, strip_provider_prefix
from .local import LocalAdapter
from .registry import ProviderRegistry, model_label, resolve_provider_id
from .responses import ResponsesAdapter, XAIResponsesAdapter, build_continuation_items, to_responses_input

__all__ = [
    "AnthropicAdapter",
    "EventCallback",
    "LocalAdapter",
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderRegistry",
    "ResponsesAdapter",
    "XAIResponsesAdapter",
    "build_continuation_items",
    "model_label",
    "resolve_provider_id",
    "strip_provider_prefix",
    "to_anthropic_messages",
    "to_responses_input",
]
