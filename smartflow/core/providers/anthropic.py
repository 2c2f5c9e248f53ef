"""Anthropic (Claude) LLM Provider implementation.

Uses the tool use pattern for reliable structured output: instead of asking
Claude to output JSON in text, we define a tool with the response schema
and force Claude to "call" it.
"""

import logging
import time

import anthropic

from .base import LLMProvider, TokenUsage
from .logging import log_request_response

logger = logging.getLogger(__name__)

# Input schema for free-form JSON object replies
_ANY_OBJECT_SCHEMA: dict = {"type": "object", "additionalProperties": True}


def _clean_schema_for_tool(schema: dict) -> dict:
    """Strip schema-valued additionalProperties, which tool schemas reject."""
    cleaned = {}
    for key, value in schema.items():
        if key == "additionalProperties" and isinstance(value, dict):
            logger.warning(
                "Stripping schema-valued additionalProperties from tool schema"
            )
            continue
        if isinstance(value, dict):
            cleaned[key] = _clean_schema_for_tool(value)
        elif isinstance(value, list):
            cleaned[key] = [
                _clean_schema_for_tool(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            cleaned[key] = value
    return cleaned


def _make_structured_tool(schema_name: str, response_schema: dict | None) -> dict:
    """Create a tool definition that forces structured output."""
    return {
        "name": schema_name,
        "description": (
            "Return your response as structured data. "
            "You MUST call this tool with your complete response."
        ),
        "input_schema": (
            _clean_schema_for_tool(response_schema)
            if response_schema is not None
            else _ANY_OBJECT_SCHEMA
        ),
    }


def _extract_tool_input(response) -> dict | None:
    """Extract tool_use input from a Claude response."""
    for block in response.content:
        if block.type == "tool_use":
            return block.input
    return None


def _extract_usage(response) -> TokenUsage:
    """Extract token usage from an Anthropic API response."""
    if not hasattr(response, "usage") or response.usage is None:
        return TokenUsage()
    return TokenUsage(
        input_tokens=getattr(response.usage, "input_tokens", 0) or 0,
        output_tokens=getattr(response.usage, "output_tokens", 0) or 0,
    )


class AnthropicProvider(LLMProvider):
    """Anthropic (Claude) LLM provider."""

    provider_name = "anthropic"
    _transient_errors = (
        anthropic.APIConnectionError,
        anthropic.InternalServerError,
        anthropic.RateLimitError,
    )

    def __init__(self, api_key: str = "", *, base_url: str = "") -> None:
        if not api_key:
            raise ValueError(
                "Anthropic API key not found. Set it via:\n"
                "  export ANTHROPIC_API_KEY=sk-ant-..."
            )
        super().__init__(api_key)
        self._base_url = base_url

    @property
    def default_fast_model(self) -> str:
        return "claude-haiku-4-5-20251001"

    @property
    def default_strong_model(self) -> str:
        return "claude-sonnet-4-5-20250929"

    def _get_async_client(self) -> anthropic.AsyncAnthropic:
        if self._cached_async_client is None:
            kwargs: dict = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._cached_async_client = anthropic.AsyncAnthropic(**kwargs)
        return self._cached_async_client

    async def json_call_async(
        self,
        prompt: str,
        *,
        system: str | None = None,
        response_schema: dict | None = None,
        schema_name: str = "response",
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> tuple[dict, TokenUsage]:
        model = model or self.default_fast_model
        client = self._get_async_client()
        tool = _make_structured_tool(schema_name, response_schema)

        params: dict = {
            "model": model,
            "max_tokens": max_tokens or 4096,
            "tools": [tool],
            "tool_choice": {"type": "tool", "name": schema_name},
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system

        logger.info(f"[Claude] json_call model={model} schema={schema_name}")
        api_start = time.time()
        response = await self._with_retry_async(lambda: client.messages.create(**params))
        logger.info(f"[Claude] API response in {time.time() - api_start:.2f}s")

        log_request_response(
            function_name="json_call",
            request={"model": model, "prompt_length": len(prompt)},
            response=response,
            provider="claude",
        )

        return _extract_tool_input(response) or {}, _extract_usage(response)
