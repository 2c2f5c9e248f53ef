"""Provider tests with mocked HTTP clients.

Tests request building, response extraction, retry on transient errors
and the provider registry.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from smartflow.config import CustomProviderConfig
from smartflow.core import providers as provider_registry
from smartflow.core.providers import get_provider
from smartflow.core.providers.anthropic import (
    AnthropicProvider,
    _clean_schema_for_tool,
    _make_structured_tool,
)
from smartflow.core.providers.base import TokenUsage
from smartflow.core.providers.openai import OpenAIProvider
from smartflow.core.providers.openai_compat import OpenAICompatProvider


def _make_openai_provider(**overrides):
    """Create an OpenAIProvider via __new__ with all required attrs set.

    Bypasses __init__ (no API key validation) for unit testing with mocked clients.
    """
    provider = OpenAIProvider.__new__(OpenAIProvider)
    defaults = {
        "_api_key": "test-key",
        "_base_url": "",
        "_cached_async_client": None,
    }
    defaults.update(overrides)
    for k, v in defaults.items():
        setattr(provider, k, v)
    return provider


def _make_anthropic_provider(**overrides):
    provider = AnthropicProvider.__new__(AnthropicProvider)
    defaults = {"_api_key": "test-key", "_base_url": "", "_cached_async_client": None}
    defaults.update(overrides)
    for k, v in defaults.items():
        setattr(provider, k, v)
    return provider


# =============================================================================
# Mock response factories
# =============================================================================


def _make_openai_response(
    text: str | None = '{"key": "value"}',
    prompt_tokens: int = 100,
    completion_tokens: int = 50,
):
    """Create a mock Chat Completions response."""
    message = MagicMock()
    message.content = text

    choice = MagicMock()
    choice.message = message

    usage = MagicMock()
    usage.prompt_tokens = prompt_tokens
    usage.completion_tokens = completion_tokens

    response = MagicMock()
    response.choices = [choice]
    response.usage = usage
    return response


def _make_anthropic_response(tool_input: dict | None = None):
    blocks = []
    if tool_input is not None:
        block = MagicMock()
        block.type = "tool_use"
        block.input = tool_input
        blocks.append(block)

    usage = MagicMock()
    usage.input_tokens = 80
    usage.output_tokens = 40

    response = MagicMock()
    response.content = blocks
    response.usage = usage
    return response


def _mock_openai_client(*side_effect):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(side_effect))
    return client


def _rate_limit_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(429, request=request)
    return openai.RateLimitError("rate limited", response=response, body=None)


# =============================================================================
# OpenAI Provider Tests
# =============================================================================


class TestOpenAIBuildParams:
    def test_schema_uses_strict_json_schema(self):
        provider = _make_openai_provider()
        params = provider._build_params(
            "gpt-5", "prompt", "system text", {"type": "object"}, "generated_fields", None
        )
        assert params["messages"][0] == {"role": "system", "content": "system text"}
        assert params["response_format"]["type"] == "json_schema"
        assert params["response_format"]["json_schema"]["name"] == "generated_fields"
        assert params["response_format"]["json_schema"]["strict"] is True
        assert "max_tokens" not in params

    def test_free_form_uses_json_object(self):
        provider = _make_openai_provider()
        params = provider._build_params("gpt-5-mini", "prompt", None, None, "enrichment", 500)
        assert params["response_format"] == {"type": "json_object"}
        assert params["messages"] == [{"role": "user", "content": "prompt"}]
        assert params["max_tokens"] == 500


class TestOpenAIJsonCall:
    def test_returns_data_and_usage(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(_make_openai_response('{"risk": "low"}'))

        with patch.object(OpenAIProvider, "_get_async_client", return_value=client):
            data, usage = asyncio.run(provider.json_call_async("prompt", model="gpt-5-mini"))

        assert data == {"risk": "low"}
        assert usage == TokenUsage(input_tokens=100, output_tokens=50)
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-5-mini"

    def test_default_model(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(_make_openai_response())

        with patch.object(OpenAIProvider, "_get_async_client", return_value=client):
            asyncio.run(provider.json_call_async("prompt"))

        assert client.chat.completions.create.call_args.kwargs["model"] == "gpt-5-mini"

    def test_empty_reply_is_empty_dict(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(_make_openai_response(None))

        with patch.object(OpenAIProvider, "_get_async_client", return_value=client):
            data, _ = asyncio.run(provider.json_call_async("prompt"))

        assert data == {}

    def test_non_object_reply_raises(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(_make_openai_response("[1, 2]"))

        with patch.object(OpenAIProvider, "_get_async_client", return_value=client):
            with pytest.raises(ValueError, match="Expected a JSON object"):
                asyncio.run(provider.json_call_async("prompt"))

    def test_retries_transient_errors(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(
            _rate_limit_error(), _make_openai_response('{"ok": true}')
        )

        with (
            patch.object(OpenAIProvider, "_get_async_client", return_value=client),
            patch("smartflow.core.providers.base.asyncio.sleep", new=AsyncMock()) as sleep,
        ):
            data, _ = asyncio.run(provider.json_call_async("prompt"))

        assert data == {"ok": True}
        assert client.chat.completions.create.await_count == 2
        sleep.assert_awaited_once()

    def test_retry_exhaustion_raises(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(*[_rate_limit_error() for _ in range(3)])

        async def call():
            return await provider._with_retry_async(
                lambda: client.chat.completions.create(), max_retries=2
            )

        with patch("smartflow.core.providers.base.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(openai.RateLimitError):
                asyncio.run(call())
        assert client.chat.completions.create.await_count == 3

    def test_non_transient_error_not_retried(self):
        provider = _make_openai_provider()
        client = _mock_openai_client(KeyError("bad"))

        with patch.object(OpenAIProvider, "_get_async_client", return_value=client):
            with pytest.raises(KeyError):
                asyncio.run(provider.json_call_async("prompt"))
        assert client.chat.completions.create.await_count == 1

    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            OpenAIProvider("")


class TestCloseAsync:
    def test_closes_cached_client(self):
        client = MagicMock()
        client.close = AsyncMock()
        provider = _make_openai_provider(_cached_async_client=client)

        asyncio.run(provider.close_async())

        client.close.assert_awaited_once()
        assert provider._cached_async_client is None


# =============================================================================
# Anthropic Provider Tests
# =============================================================================


class TestAnthropicJsonCall:
    def test_extracts_tool_input(self):
        provider = _make_anthropic_provider()
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=_make_anthropic_response({"fields": []})
        )

        with patch.object(AnthropicProvider, "_get_async_client", return_value=client):
            data, usage = asyncio.run(
                provider.json_call_async(
                    "prompt", system="sys", response_schema={"type": "object"}, schema_name="gen"
                )
            )

        assert data == {"fields": []}
        assert usage.output_tokens == 40
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": "gen"}
        assert kwargs["system"] == "sys"

    def test_missing_tool_block(self):
        provider = _make_anthropic_provider()
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=_make_anthropic_response(None))

        with patch.object(AnthropicProvider, "_get_async_client", return_value=client):
            data, _ = asyncio.run(provider.json_call_async("prompt"))

        assert data == {}

    def test_free_form_tool_schema(self):
        tool = _make_structured_tool("enrichment", None)
        assert tool["input_schema"]["type"] == "object"

    def test_schema_valued_additional_properties_stripped(self):
        cleaned = _clean_schema_for_tool(
            {
                "type": "object",
                "additionalProperties": {"type": "string"},
                "properties": {"a": {"type": "object", "additionalProperties": False}},
            }
        )
        assert "additionalProperties" not in cleaned
        assert cleaned["properties"]["a"]["additionalProperties"] is False


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_builtin_compat_provider(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        provider = get_provider("openrouter")
        assert isinstance(provider, OpenAICompatProvider)
        assert provider.provider_name == "openrouter"
        assert provider.default_strong_model == "anthropic/claude-sonnet-4.5"

    def test_custom_provider(self, monkeypatch):
        monkeypatch.setenv("ACME_KEY", "acme-key")
        custom = {"acme": CustomProviderConfig(base_url="https://llm.acme.test/v1", api_key_env="ACME_KEY")}
        provider = get_provider("acme", custom)
        assert isinstance(provider, OpenAICompatProvider)
        assert provider._base_url == "https://llm.acme.test/v1"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            get_provider("nonesuch")

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key not found"):
            get_provider("groq")

    def test_close_providers_clears_cache(self):
        provider = MagicMock()
        provider.close_async = AsyncMock()
        provider_registry._cached_providers["fake"] = provider
        try:
            asyncio.run(provider_registry.close_providers())
        finally:
            provider_registry.reset_provider_cache()
        provider.close_async.assert_awaited_once()
        assert provider_registry._cached_providers == {}
