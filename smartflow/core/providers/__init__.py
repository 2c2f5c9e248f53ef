"""LLM Provider registry and factory.

Provides:
- get_provider(): Create a provider instance from a provider name
- get_cached_provider(): Reused provider per name, for connection reuse
- close_providers(): Close cached async clients before the loop shuts down
"""

import importlib

from .base import LLMProvider, TokenUsage
from ...config import (
    get_config,
    get_api_key_for_provider,
    CustomProviderConfig,
)


# =============================================================================
# Provider Registry
# =============================================================================

# Each entry: module, class name, constructor kwargs.
# Lazy-imported to avoid loading all SDKs at startup.
_BUILTIN_REGISTRY: dict[str, dict] = {
    "openai": {
        "module": ".openai",
        "class": "OpenAIProvider",
    },
    "anthropic": {
        "module": ".anthropic",
        "class": "AnthropicProvider",
    },
    "openrouter": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "kwargs": {
            "base_url": "https://openrouter.ai/api/v1",
            "provider_label": "openrouter",
            "default_fast": "anthropic/claude-haiku-4.5",
            "default_strong": "anthropic/claude-sonnet-4.5",
        },
    },
    "deepseek": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "kwargs": {
            "base_url": "https://api.deepseek.com/v1",
            "provider_label": "deepseek",
            "default_fast": "deepseek-chat",
            "default_strong": "deepseek-chat",
        },
    },
    "together": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "kwargs": {
            "base_url": "https://api.together.xyz/v1",
            "provider_label": "together",
            "default_fast": "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo",
            "default_strong": "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
        },
    },
    "groq": {
        "module": ".openai_compat",
        "class": "OpenAICompatProvider",
        "kwargs": {
            "base_url": "https://api.groq.com/openai/v1",
            "provider_label": "groq",
            "default_fast": "llama-3.3-70b-versatile",
            "default_strong": "llama-3.3-70b-versatile",
        },
    },
}


def get_provider(
    provider_name: str,
    custom_providers: dict[str, CustomProviderConfig] | None = None,
) -> LLMProvider:
    """Create a provider instance by name.

    Checks custom providers first, then built-in registry.

    Raises:
        ValueError: If provider is unknown or its API key is missing
    """
    api_key = get_api_key_for_provider(provider_name, custom_providers)

    if custom_providers and provider_name in custom_providers:
        from .openai_compat import OpenAICompatProvider

        custom = custom_providers[provider_name]
        return OpenAICompatProvider(
            api_key=api_key,
            base_url=custom.base_url,
            provider_label=provider_name,
        )

    if provider_name not in _BUILTIN_REGISTRY:
        available = sorted(
            set(list(_BUILTIN_REGISTRY.keys()) + list((custom_providers or {}).keys()))
        )
        raise ValueError(
            f"Unknown LLM provider: {provider_name!r}. "
            f"Available: {', '.join(available)}"
        )

    entry = _BUILTIN_REGISTRY[provider_name]
    module = importlib.import_module(entry["module"], package=__package__)
    cls = getattr(module, entry["class"])

    kwargs = dict(entry.get("kwargs", {}))
    kwargs["api_key"] = api_key
    return cls(**kwargs)


# =============================================================================
# Cached provider access
# =============================================================================

_cached_providers: dict[str, LLMProvider] = {}


def get_cached_provider(provider_name: str) -> LLMProvider:
    """Get or create a cached provider instance."""
    if provider_name not in _cached_providers:
        config = get_config()
        _cached_providers[provider_name] = get_provider(provider_name, config.providers)
    return _cached_providers[provider_name]


async def close_providers() -> None:
    """Close cached providers' async clients.

    Call this before the event loop shuts down to cleanly release
    HTTP connections and avoid 'Event loop is closed' errors.
    """
    for provider in list(_cached_providers.values()):
        await provider.close_async()
    _cached_providers.clear()


def reset_provider_cache() -> None:
    """Reset the provider cache (for testing)."""
    _cached_providers.clear()


__all__ = [
    "LLMProvider",
    "TokenUsage",
    "get_provider",
    "get_cached_provider",
    "close_providers",
    "reset_provider_cache",
]
