"""Tests for provider routing and registry construction."""

from __future__ import annotations

from typing import Any, cast

import pytest

from openai import AsyncOpenAI

from workspace_agent.ai.client import AIClient
from workspace_agent.ai.providers import (
    AnthropicAdapter,
    LocalAdapter,
    ProviderRegistry,
    ResponsesAdapter,
    XAIResponsesAdapter,
    model_label,
    resolve_provider_id,
)
from workspace_agent.settings import ProviderSettings

from helpers import ScriptedAdapter


class _Closable:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("anthropic/claude-sonnet-4-5", "anthropic"),
        ("claude-opus-4-6", "anthropic"),
        ("gpt-5.2-codex", "openai"),
        ("o3-mini", "openai"),
        ("grok-code-fast-1", "xai"),
        ("gemini-2.0-flash", "google"),
        ("llama3.2:3b", "ollama"),
        ("phi3:mini", "ollama"),
        ("mystery", None),
        ("", None),
    ],
)
def test_resolve_provider_id(model: str, expected: str | None) -> None:
    assert resolve_provider_id(model) == expected


def test_model_label_strips_date_suffix() -> None:
    assert model_label("claude-3-5-sonnet-20241022", "Anthropic") == "Claude 3 5 Sonnet (Anthropic)"
    assert model_label("gpt-4o", "OpenAI") == "Gpt 4O (OpenAI)"


def test_lookup_prefers_explicit_mapping_then_prefix_then_known_models() -> None:
    fake = ScriptedAdapter()
    openai_adapter = ResponsesAdapter(client=cast(AsyncOpenAI, _Closable()))
    registry = ProviderRegistry()
    registry.register(fake)
    registry.register(openai_adapter)

    assert registry.get_provider("gpt-4o") is openai_adapter
    assert registry.get_provider("openai/custom-model") is openai_adapter
    assert registry.get_provider("fake-model") is fake
    assert registry.get_provider("claude-sonnet-4-5") is None

    registry.register_model("tuned-model", "fake")
    assert registry.get_provider("tuned-model") is fake
    with pytest.raises(KeyError):
        registry.register_model("other", "missing")


def test_unregister_removes_model_mappings() -> None:
    registry = ProviderRegistry()
    registry.register(ScriptedAdapter())

    registry.unregister("fake")
    registry.unregister("fake")

    assert len(registry) == 0
    assert "fake" not in registry
    assert registry.get_provider("fake-model") is None


def test_list_models_and_capabilities() -> None:
    registry = ProviderRegistry()
    registry.register(ScriptedAdapter())

    assert registry.list_models() == [{"id": "fake-model", "provider": "fake", "label": "Fake Model (Fake Provider)"}]
    assert registry.capabilities("fake") is not None
    assert registry.capabilities("missing") is None
    assert registry.has_local_provider() is False


def test_local_provider_detection() -> None:
    registry = ProviderRegistry()
    registry.register(LocalAdapter(client=cast(AIClient, _Closable())))

    assert registry.has_local_provider() is True
    assert registry.get_provider("ollama/anything") is registry.get_provider_by_id("ollama")


def test_from_settings_registers_configured_providers() -> None:
    settings = ProviderSettings(
        anthropic_api_key="sk-ant",
        openai_api_key="",
        xai_api_key="xai-key",
        enable_ollama=True,
    )

    registry = ProviderRegistry.from_settings(settings)

    assert registry.provider_ids() == ["anthropic", "xai", "ollama"]
    assert isinstance(registry.get_provider_by_id("anthropic"), AnthropicAdapter)
    assert isinstance(registry.get_provider_by_id("xai"), XAIResponsesAdapter)
    local = registry.get_provider_by_id("ollama")
    assert isinstance(local, LocalAdapter)
    assert local.get_performance_hints().max_concurrent_tools == 3
    assert registry.get_provider("grok-2") is registry.get_provider_by_id("xai")


def test_from_settings_without_keys_is_empty() -> None:
    assert len(ProviderRegistry.from_settings(ProviderSettings())) == 0


@pytest.mark.asyncio
async def test_aclose_closes_every_adapter() -> None:
    clients: list[Any] = [_Closable(), _Closable()]
    registry = ProviderRegistry()
    registry.register(ResponsesAdapter(client=cast(AsyncOpenAI, clients[0])))
    registry.register(XAIResponsesAdapter(client=cast(AsyncOpenAI, clients[1])))

    await registry.aclose()

    assert all(client.closed for client in clients)
    assert [adapter.id for adapter in registry] == ["openai", "xai"]


def test_scripted_adapter_is_not_mistaken_for_cloud() -> None:
    registry = ProviderRegistry()
    registry.register(ScriptedAdapter())

    assert registry.get_provider("gpt-4o") is None
    assert "fake" in registry
