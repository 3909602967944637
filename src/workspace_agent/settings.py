"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from .ai.orchestration.types import PerformanceHints

__all__ = [
    "EngineSettings",
    "ProviderSettings",
    "Settings",
    "SettingsStore",
    "load_settings",
    "DEFAULT_PERFORMANCE_PROFILES",
    "DEFAULT_TOOL_COMPATIBILITY",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".workspace_agent"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1

_ENV_OVERRIDES: Mapping[str, str] = {
    "WORKSPACE_AGENT_ANTHROPIC_API_KEY": "providers.anthropic_api_key",
    "WORKSPACE_AGENT_ANTHROPIC_BASE_URL": "providers.anthropic_base_url",
    "WORKSPACE_AGENT_OPENAI_API_KEY": "providers.openai_api_key",
    "WORKSPACE_AGENT_OPENAI_BASE_URL": "providers.openai_base_url",
    "WORKSPACE_AGENT_OPENAI_ORGANIZATION": "providers.openai_organization",
    "WORKSPACE_AGENT_XAI_API_KEY": "providers.xai_api_key",
    "WORKSPACE_AGENT_XAI_BASE_URL": "providers.xai_base_url",
    "WORKSPACE_AGENT_OLLAMA_BASE_URL": "providers.ollama_base_url",
    "WORKSPACE_AGENT_DEFAULT_MODEL": "engine.default_model",
    "WORKSPACE_AGENT_LOG_LEVEL": "engine.log_level",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "WORKSPACE_AGENT_DEBUG_LOGGING": "engine.debug_logging",
    "WORKSPACE_AGENT_TERMINAL_ENABLED": "engine.terminal_enabled",
    "WORKSPACE_AGENT_ENABLE_OLLAMA": "providers.enable_ollama",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "WORKSPACE_AGENT_REQUEST_TIMEOUT": "providers.request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "WORKSPACE_AGENT_MAX_ITERATIONS": "engine.max_iterations",
    "WORKSPACE_AGENT_MAX_CONTEXT_TOKENS": "engine.max_context_tokens",
    "WORKSPACE_AGENT_MAX_INLINE_IMAGES": "engine.max_inline_images",
    "WORKSPACE_AGENT_MAX_INLINE_IMAGE_CHARS": "engine.max_inline_image_chars",
    "WORKSPACE_AGENT_MAX_RETRIES": "providers.max_retries",
}
# Vendor variables are read only when the namespaced ones are unset.
_FALLBACK_ENV: Mapping[str, str] = {
    "ANTHROPIC_API_KEY": "providers.anthropic_api_key",
    "OPENAI_API_KEY": "providers.openai_api_key",
    "XAI_API_KEY": "providers.xai_api_key",
    "OLLAMA_BASE_URL": "providers.ollama_base_url",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

DEFAULT_PERFORMANCE_PROFILES: Mapping[str, PerformanceHints] = {
    "anthropic": PerformanceHints(max_output_tokens=8_000),
    "openai": PerformanceHints(max_output_tokens=16_000),
    "xai": PerformanceHints(max_concurrent_tools=8, max_tools_per_iteration=10, max_output_tokens=8_000),
    "ollama": PerformanceHints(
        max_concurrent_tools=3,
        max_tools_per_iteration=5,
        max_output_tokens=2_000,
        reduced_parallelism=True,
        conservative_tokens=True,
    ),
}

DEFAULT_TOOL_COMPATIBILITY: Mapping[str, tuple[str, ...]] = {
    "anthropic": ("*",),
    "openai": ("*",),
    "xai": ("*",),
    "ollama": ("file_read", "list_directory", "grep_search", "edit_file", "write_file", "run_terminal"),
}


@dataclass(slots=True)
class EngineSettings:
    """Bounds and toggles for the iteration engine."""

    max_iterations: int = 75
    max_context_tokens: int = 200_000
    max_inline_images: int = 8
    max_inline_image_chars: int = 200_000
    default_model: str = "claude-sonnet-4-5"
    terminal_enabled: bool = False
    debug_logging: bool = False
    log_level: str = "INFO"


@dataclass(slots=True)
class ProviderSettings:
    """Credentials, endpoints and per-provider tuning."""

    anthropic_api_key: str = ""
    anthropic_base_url: str | None = None
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_organization: str | None = None
    xai_api_key: str = ""
    xai_base_url: str = "https://api.x.ai/v1"
    ollama_base_url: str = "http://localhost:11434"
    enable_ollama: bool = False
    request_timeout: float = 120.0
    max_retries: int = 1
    tool_disabled_model_prefixes: tuple[str, ...] = ("gemma",)
    performance_profiles: dict[str, PerformanceHints] = field(
        default_factory=lambda: dict(DEFAULT_PERFORMANCE_PROFILES)
    )
    tool_compatibility: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_TOOL_COMPATIBILITY)
    )

    def hints_for(self, provider_id: str) -> PerformanceHints:
        """Performance profile for ``provider_id``, falling back to cloud defaults."""
        return self.performance_profiles.get(provider_id, PerformanceHints())

    def tools_for(self, provider_id: str) -> tuple[str, ...]:
        return self.tool_compatibility.get(provider_id, ("*",))


@dataclass(slots=True)
class Settings:
    """Top-level settings bundle."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)


class SettingsStore:
    """Persistence adapter for :class:`Settings`.

    API keys are never written to disk; they come from the environment.
    """

    _SECRET_FIELDS = ("anthropic_api_key", "openai_api_key", "xai_api_key")

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(
        self,
        *,
        overrides: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Settings:
        """Load settings from disk, applying runtime and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            engine_payload = payload.get("engine")
            if isinstance(engine_payload, Mapping):
                settings.engine = _build_section(EngineSettings, engine_payload)
            provider_payload = payload.get("providers")
            if isinstance(provider_payload, Mapping):
                settings.providers = _build_providers(provider_payload)
            LOGGER.debug("Settings loaded from %s", self._path)

        if overrides:
            settings = _apply_overrides(settings, overrides, source="runtime")
        return _apply_env_overrides(settings, os.environ if env is None else env)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        providers = asdict(settings.providers)
        for name in self._SECRET_FIELDS:
            providers.pop(name, None)
        providers["tool_disabled_model_prefixes"] = list(settings.providers.tool_disabled_model_prefixes)
        providers["tool_compatibility"] = {
            key: list(value) for key, value in settings.providers.tool_compatibility.items()
        }
        return {
            "version": _SETTINGS_VERSION,
            "engine": asdict(settings.engine),
            "providers": providers,
        }

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Build settings from defaults, an optional JSON file and the environment.

    Args:
        env: Environment mapping; defaults to ``os.environ``.
        path: Settings file to read. Without it only defaults and overrides apply.
        overrides: Dotted ``section.field`` values applied before the environment.
    """

    if path is not None:
        return SettingsStore(path).load(overrides=overrides, env=env)
    settings = Settings()
    if overrides:
        settings = _apply_overrides(settings, overrides, source="runtime")
    return _apply_env_overrides(settings, os.environ if env is None else env)


def redact_secret(value: str) -> str:
    """Mask all but the last four characters of a secret."""
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def _build_section(cls: type, payload: Mapping[str, Any]) -> Any:
    allowed = {item.name for item in fields(cls)}
    data = {key: value for key, value in payload.items() if key in allowed}
    try:
        return cls(**data)
    except TypeError as exc:
        LOGGER.warning("Settings payload for %s contained unexpected data: %s", cls.__name__, exc)
        return cls()


def _build_providers(payload: Mapping[str, Any]) -> ProviderSettings:
    data = dict(payload)
    profiles = data.pop("performance_profiles", None)
    compatibility = data.pop("tool_compatibility", None)
    prefixes = data.pop("tool_disabled_model_prefixes", None)
    providers = _build_section(ProviderSettings, data)
    if isinstance(profiles, Mapping):
        merged = dict(DEFAULT_PERFORMANCE_PROFILES)
        for provider_id, profile in profiles.items():
            if isinstance(profile, Mapping):
                merged[str(provider_id)] = PerformanceHints.from_mapping(profile)
        providers.performance_profiles = merged
    if isinstance(compatibility, Mapping):
        merged_tools = dict(DEFAULT_TOOL_COMPATIBILITY)
        for provider_id, names in compatibility.items():
            if isinstance(names, (list, tuple)):
                merged_tools[str(provider_id)] = tuple(str(name) for name in names)
        providers.tool_compatibility = merged_tools
    if isinstance(prefixes, (list, tuple)):
        providers.tool_disabled_model_prefixes = tuple(str(prefix) for prefix in prefixes)
    return providers


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    engine_updates: Dict[str, Any] = {}
    provider_updates: Dict[str, Any] = {}
    engine_fields = {item.name for item in fields(EngineSettings)}
    provider_fields = {item.name for item in fields(ProviderSettings)}
    for key, value in overrides.items():
        if value is None:
            continue
        section, _, name = key.partition(".")
        if section == "engine" and name in engine_fields:
            engine_updates[name] = value
        elif section == "providers" and name in provider_fields:
            provider_updates[name] = value
        else:
            LOGGER.debug("Ignoring unknown %s settings override %s", source, key)
    if engine_updates or provider_updates:
        LOGGER.debug(
            "Applying %s settings overrides: %s",
            source,
            sorted([*(f"engine.{k}" for k in engine_updates), *(f"providers.{k}" for k in provider_updates)]),
        )
        settings = replace(
            settings,
            engine=replace(settings.engine, **engine_updates),
            providers=replace(settings.providers, **provider_updates),
        )
    return settings


def _apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> Settings:
    overrides: Dict[str, Any] = {}
    for env_name, target in _FALLBACK_ENV.items():
        value = env.get(env_name)
        if value:
            overrides[target] = value
    for env_name, target in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[target] = value
    for env_name, target in _BOOL_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[target] = value.strip().lower() in _TRUE_VALUES
    for env_name, target in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[target] = int(value, 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
    for env_name, target in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[target] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="environment")
    return settings
