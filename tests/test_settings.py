"""Tests for settings defaults, environment overrides and persistence."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

from workspace_agent.ai.orchestration.engine import EngineConfig
from workspace_agent.ai.orchestration.types import PerformanceHints
from workspace_agent.settings import (
    DEFAULT_PERFORMANCE_PROFILES,
    ProviderSettings,
    Settings,
    SettingsStore,
    load_settings,
    redact_secret,
)


def test_defaults_without_environment() -> None:
    settings = load_settings(env={})

    assert settings == Settings()
    assert settings.engine.max_iterations == 75
    assert settings.engine.max_context_tokens == 200_000
    assert settings.providers.enable_ollama is False


def test_environment_overrides_are_typed() -> None:
    settings = load_settings(
        env={
            "WORKSPACE_AGENT_MAX_ITERATIONS": "20",
            "WORKSPACE_AGENT_DEBUG_LOGGING": "yes",
            "WORKSPACE_AGENT_ENABLE_OLLAMA": "0",
            "WORKSPACE_AGENT_REQUEST_TIMEOUT": "30.5",
            "WORKSPACE_AGENT_DEFAULT_MODEL": "gpt-5.2",
        }
    )

    assert settings.engine.max_iterations == 20
    assert settings.engine.debug_logging is True
    assert settings.providers.enable_ollama is False
    assert settings.providers.request_timeout == 30.5
    assert settings.engine.default_model == "gpt-5.2"


def test_invalid_numbers_are_ignored() -> None:
    settings = load_settings(env={"WORKSPACE_AGENT_MAX_ITERATIONS": "many", "WORKSPACE_AGENT_REQUEST_TIMEOUT": "soon"})

    assert settings.engine.max_iterations == 75
    assert settings.providers.request_timeout == 120.0


def test_namespaced_keys_win_over_vendor_variables() -> None:
    settings = load_settings(
        env={
            "ANTHROPIC_API_KEY": "vendor-anthropic",
            "OPENAI_API_KEY": "vendor-openai",
            "WORKSPACE_AGENT_OPENAI_API_KEY": "namespaced-openai",
        }
    )

    assert settings.providers.anthropic_api_key == "vendor-anthropic"
    assert settings.providers.openai_api_key == "namespaced-openai"


def test_runtime_overrides_apply_before_environment() -> None:
    settings = load_settings(
        env={"WORKSPACE_AGENT_MAX_ITERATIONS": "9"},
        overrides={"engine.max_iterations": 3, "engine.terminal_enabled": True, "unknown.key": 1},
    )

    assert settings.engine.max_iterations == 9
    assert settings.engine.terminal_enabled is True


def test_save_and_load_roundtrip_excludes_secrets(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings()
    original.engine.max_iterations = 40
    original.providers = replace(
        original.providers,
        openai_api_key="sk-secret",
        enable_ollama=True,
        tool_disabled_model_prefixes=("gemma", "phi"),
    )

    SettingsStore(path).save(original)
    raw = json.loads(path.read_text(encoding="utf-8"))
    reloaded = SettingsStore(path).load(env={})

    assert "openai_api_key" not in raw["providers"]
    assert raw["version"] == 1
    assert reloaded.engine.max_iterations == 40
    assert reloaded.providers == replace(original.providers, openai_api_key="")


def test_profiles_from_file_merge_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "providers": {
                    "performance_profiles": {"ollama": {"maxConcurrentTools": 1, "maxToolsPerIteration": 2}},
                    "tool_compatibility": {"ollama": ["file_read"]},
                }
            }
        ),
        encoding="utf-8",
    )

    providers = load_settings(env={}, path=path).providers

    assert providers.hints_for("ollama") == PerformanceHints(max_concurrent_tools=1, max_tools_per_iteration=2)
    assert providers.hints_for("anthropic") == DEFAULT_PERFORMANCE_PROFILES["anthropic"]
    assert providers.tools_for("ollama") == ("file_read",)
    assert providers.tools_for("custom") == ("*",)


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load(env={}) == Settings()


def test_unknown_provider_falls_back_to_cloud_hints() -> None:
    assert ProviderSettings().hints_for("google") == PerformanceHints()


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abc") == "***"
    assert redact_secret("sk-123456") == "*****3456"


def test_engine_config_from_settings() -> None:
    settings = load_settings(env={"WORKSPACE_AGENT_MAX_ITERATIONS": "12", "WORKSPACE_AGENT_MAX_INLINE_IMAGES": "2"})

    config = EngineConfig.from_settings(settings.engine)

    assert config.max_iterations == 12
    assert config.max_inline_images == 2
    assert config.max_context_tokens == 200_000
