"""OpenAI-compatible LLM Provider for third-party endpoints.

Supports any provider that implements the OpenAI Chat Completions API:
OpenRouter, DeepSeek, Together, Groq, or a custom base_url.
"""

from .openai import OpenAIProvider


class OpenAICompatProvider(OpenAIProvider):
    """OpenAI-compatible provider for third-party endpoints."""

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str = "",
        provider_label: str = "openai_compat",
        default_fast: str = "gpt-5-mini",
        default_strong: str = "gpt-5",
    ) -> None:
        if not api_key:
            raise ValueError(
                f"API key not found for {provider_label}. "
                f"Set it as an environment variable."
            )
        super().__init__(api_key, base_url=base_url)
        self.provider_name = provider_label
        self._default_fast = default_fast
        self._default_strong = default_strong

    @property
    def default_fast_model(self) -> str:
        return self._default_fast

    @property
    def default_strong_model(self) -> str:
        return self._default_strong
