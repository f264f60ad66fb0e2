"""Provider resolution, model registry and API key checks.

The only place that maps a ProviderType to a concrete Generator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from convergence.core.config import LLMConfig
from convergence.core.errors import ConfigError
from convergence.core.llm import AnthropicClient, GeminiClient, Generator, OpenAIClient
from relay.models import ProviderType


@dataclass(frozen=True)
class ModelOption:
    id: str
    label: str


MODEL_REGISTRY: dict[ProviderType, tuple[ModelOption, ...]] = {
    ProviderType.OPENAI: (
        ModelOption("gpt-4o", "GPT-4o (Strong)"),
        ModelOption("gpt-4-turbo-preview", "GPT-4 Turbo"),
        ModelOption("gpt-4o-mini", "GPT-4o Mini (Fast)"),
        ModelOption("gpt-3.5-turbo", "GPT-3.5 Turbo"),
    ),
    ProviderType.ANTHROPIC: (
        ModelOption("claude-3-5-sonnet-20240620", "Claude 3.5 Sonnet (Strong)"),
        ModelOption("claude-3-opus-20240229", "Claude 3 Opus"),
        ModelOption("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
        ModelOption("claude-3-haiku-20240307", "Claude 3 Haiku (Fast)"),
    ),
    ProviderType.GOOGLE: (
        ModelOption("gemini-1.5-pro", "Gemini 1.5 Pro (Strong)"),
        ModelOption("gemini-1.5-flash", "Gemini 1.5 Flash (Fast)"),
        ModelOption("gemini-1.0-pro", "Gemini 1.0 Pro"),
    ),
}

_API_KEY_ENV: dict[ProviderType, str] = {
    ProviderType.OPENAI: "OPENAI_API_KEY",
    ProviderType.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderType.GOOGLE: "GOOGLE_API_KEY",
}

# Which provider serves each model in the registry
_MODEL_PROVIDER: dict[str, ProviderType] = {
    option.id: provider
    for provider, options in MODEL_REGISTRY.items()
    for option in options
}


def default_models(template_id: str) -> tuple[str, str]:
    """(writer_model, collaborator_model) suggested for a template.

    Long-form specs get the strong models; everything else the fast ones.
    """
    if template_id == "software-spec":
        return "claude-3-5-sonnet-20240620", "gpt-4o"
    return "gpt-4o-mini", "claude-3-haiku-20240307"


def provider_for_model(model: str) -> Optional[ProviderType]:
    return _MODEL_PROVIDER.get(model)


def api_key_env(provider: ProviderType) -> str:
    """Name of the environment variable holding the provider's API key."""
    return _API_KEY_ENV[provider]


def missing_api_keys(
    providers: list[ProviderType],
    environ: Optional[Mapping[str, str]] = None,
) -> list[str]:
    """Env var names that are unset for any of the given providers."""
    env = os.environ if environ is None else environ
    missing: list[str] = []
    for provider in providers:
        name = api_key_env(provider)
        if not env.get(name) and name not in missing:
            missing.append(name)
    return missing


def provider_status(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Masked presence of every provider key, for health checks."""
    env = os.environ if environ is None else environ
    status: dict[str, str] = {}
    for name in _API_KEY_ENV.values():
        value = env.get(name)
        status[name] = f"set ({value[:8]}...)" if value else "MISSING"
    return status


def get_generator(
    provider: ProviderType,
    config: LLMConfig = LLMConfig(),
    api_key: Optional[str] = None,
) -> Generator:
    """Instantiate the Generator for a provider.

    The key falls back to the provider's environment variable.

    Raises:
        ConfigError: If no API key is available.
        LLMError: If the vendor SDK is not installed.
    """
    key = api_key or os.environ.get(api_key_env(provider), "")
    if not key:
        raise ConfigError(f"Missing {api_key_env(provider)}")
    if provider == ProviderType.OPENAI:
        return OpenAIClient(config, api_key=key)
    if provider == ProviderType.ANTHROPIC:
        return AnthropicClient(config, api_key=key)
    return GeminiClient(config, api_key=key)
