"""Provider registry and model-id routing."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Iterator

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderCapabilities
from .local import LocalAdapter
from .responses import ResponsesAdapter, XAIResponsesAdapter

if TYPE_CHECKING:  # pragma: no cover - import only for typing
    from ...settings import ProviderSettings

__all__ = ["ProviderRegistry", "resolve_provider_id", "model_label"]

LOGGER = logging.getLogger(__name__)

_LOCAL_MODEL_PREFIXES = (
    "llama",
    "mistral",
    "mixtral",
    "codellama",
    "deepseek",
    "qwen",
    "nomic",
    "mxbai",
    "all-minilm",
)
_DATE_SUFFIX_RE = re.compile(r"-\d{8}$")


def resolve_provider_id(model: str) -> str | None:
    """Guess the provider id for a model id.

    A ``provider/model`` prefix wins; otherwise well-known name patterns are
    checked in order. Returns ``None`` when nothing matches.
    """
    if not model:
        return None
    if "/" in model:
        return model.split("/", 1)[0]
    lowered = model.lower()
    if "claude" in lowered:
        return "anthropic"
    if lowered.startswith(("gpt", "o1", "o3")) or "gpt" in lowered:
        return "openai"
    if lowered.startswith("grok"):
        return "xai"
    if lowered.startswith("gemini"):
        return "google"
    if lowered.startswith(_LOCAL_MODEL_PREFIXES) or ":" in lowered:
        return "ollama"
    return None


def model_label(model: str, provider_name: str) -> str:
    """Human label such as ``Claude Sonnet 4 5 (Anthropic)``."""
    base = _DATE_SUFFIX_RE.sub("", model).replace("-", " ")
    return f"{base.title()} ({provider_name})"


class ProviderRegistry:
    """Holds the configured adapters and maps model ids to them."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderAdapter] = {}
        self._model_map: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(self, provider: ProviderAdapter) -> None:
        """Add ``provider`` and map each of its known models to it."""
        if provider.id in self._providers:
            LOGGER.debug("Replacing provider %s", provider.id)
        self._providers[provider.id] = provider
        for model in provider.available_models():
            self._model_map[model] = provider.id
        LOGGER.debug("Registered provider %s with %d model(s)", provider.id, len(provider.available_models()))

    def register_model(self, model: str, provider_id: str) -> None:
        """Route ``model`` to ``provider_id`` explicitly."""
        if provider_id not in self._providers:
            raise KeyError(f"Unknown provider: {provider_id}")
        self._model_map[model] = provider_id

    def unregister(self, provider_id: str) -> None:
        """Remove a provider together with its model mappings."""
        if self._providers.pop(provider_id, None) is None:
            return
        for model in [key for key, value in self._model_map.items() if value == provider_id]:
            del self._model_map[model]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get_provider(self, model: str) -> ProviderAdapter | None:
        """Adapter serving ``model``, or ``None`` when no provider matches."""
        mapped = self._model_map.get(model)
        if mapped is not None and mapped in self._providers:
            return self._providers[mapped]
        provider_id = resolve_provider_id(model)
        if provider_id is not None and provider_id in self._providers:
            return self._providers[provider_id]
        for provider in self._providers.values():
            if provider.supports_model(model):
                return provider
        return None

    def get_provider_by_id(self, provider_id: str) -> ProviderAdapter | None:
        return self._providers.get(provider_id)

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def providers(self) -> list[ProviderAdapter]:
        return list(self._providers.values())

    def capabilities(self, provider_id: str) -> ProviderCapabilities | None:
        provider = self._providers.get(provider_id)
        return provider.capabilities if provider is not None else None

    def list_models(self) -> list[dict[str, str]]:
        """All known models as ``{id, provider, label}`` entries."""
        models: list[dict[str, str]] = []
        for provider in self._providers.values():
            for model in provider.available_models():
                models.append(
                    {"id": model, "provider": provider.id, "label": model_label(model, provider.name)}
                )
        return models

    def has_local_provider(self) -> bool:
        """True when a local or reduced-parallelism provider is registered."""
        if "ollama" in self._providers:
            return True
        return any(provider.capabilities.reduced_parallelism for provider in self._providers.values())

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    async def aclose(self) -> None:
        """Close every adapter's network client."""
        for provider in self._providers.values():
            await provider.aclose()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_settings(cls, settings: ProviderSettings, **adapter_kwargs: Any) -> ProviderRegistry:
        """Build adapters for every provider with credentials configured.

        Ollama needs no key and is only added when ``enable_ollama`` is set.
        """
        registry = cls()
        common = {"request_timeout": settings.request_timeout, **adapter_kwargs}
        if settings.anthropic_api_key:
            registry.register(
                AnthropicAdapter(
                    api_key=settings.anthropic_api_key,
                    base_url=settings.anthropic_base_url,
                    hints=settings.hints_for("anthropic"),
                    tool_compatibility=settings.tools_for("anthropic"),
                    **common,
                )
            )
        if settings.openai_api_key:
            registry.register(
                ResponsesAdapter(
                    api_key=settings.openai_api_key,
                    base_url=settings.openai_base_url,
                    organization=settings.openai_organization,
                    hints=settings.hints_for("openai"),
                    tool_compatibility=settings.tools_for("openai"),
                    **common,
                )
            )
        if settings.xai_api_key:
            registry.register(
                XAIResponsesAdapter(
                    api_key=settings.xai_api_key,
                    base_url=settings.xai_base_url,
                    hints=settings.hints_for("xai"),
                    tool_compatibility=settings.tools_for("xai"),
                    **common,
                )
            )
        if settings.enable_ollama:
            registry.register(
                LocalAdapter(
                    base_url=settings.ollama_base_url,
                    max_retries=settings.max_retries,
                    tool_disabled_prefixes=settings.tool_disabled_model_prefixes,
                    hints=settings.hints_for("ollama"),
                    tool_compatibility=settings.tools_for("ollama"),
                    **common,
                )
            )
        LOGGER.info("Providers configured: %s", ", ".join(registry.provider_ids()) or "none")
        return registry
