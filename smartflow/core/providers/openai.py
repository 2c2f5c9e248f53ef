"""OpenAI LLM Provider implementation.

Uses the Chat Completions API. Schema-constrained calls use the
``json_schema`` response format; free-form calls use ``json_object``.
"""

import json
import logging
import time

import openai
from openai import AsyncOpenAI

from .base import LLMProvider, TokenUsage
from .logging import log_request_response

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI LLM provider over the Chat Completions API."""

    provider_name = "openai"
    _transient_errors = (
        openai.APIConnectionError,
        openai.InternalServerError,
        openai.RateLimitError,
    )

    def __init__(self, api_key: str = "", *, base_url: str = "") -> None:
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY not found. Set it as an environment variable.\n"
                "  export OPENAI_API_KEY=sk-..."
            )
        super().__init__(api_key)
        self._base_url = base_url

    @property
    def default_fast_model(self) -> str:
        return "gpt-5-mini"

    @property
    def default_strong_model(self) -> str:
        return "gpt-5"

    def _get_async_client(self) -> AsyncOpenAI:
        if self._cached_async_client is None:
            kwargs: dict = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._cached_async_client = AsyncOpenAI(**kwargs)
        return self._cached_async_client

    def _build_params(
        self,
        model: str,
        prompt: str,
        system: str | None,
        schema: dict | None,
        schema_name: str,
        max_tokens: int | None,
    ) -> dict:
        """Build Chat Completions API request parameters."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        params: dict = {"model": model, "messages": messages}
        if schema is not None:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            }
        else:
            params["response_format"] = {"type": "json_object"}
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        return params

    @staticmethod
    def _extract_text(response) -> str | None:
        """Extract text from Chat Completions response."""
        if response.choices:
            content = response.choices[0].message.content
            if content:
                return content
        return None

    @staticmethod
    def _extract_usage(response) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

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
        params = self._build_params(
            model, prompt, system, response_schema, schema_name, max_tokens
        )
        logger.info(f"[{self.provider_name}] json_call model={model} schema={schema_name}")

        api_start = time.time()
        response = await self._with_retry_async(
            lambda: client.chat.completions.create(**params)
        )
        logger.info(
            f"[{self.provider_name}] API response in {time.time() - api_start:.2f}s"
        )

        raw_text = self._extract_text(response)
        structured_data = json.loads(raw_text) if raw_text else None

        log_request_response(
            function_name="json_call",
            request=params,
            response=response,
            provider=self.provider_name,
        )

        if structured_data is not None and not isinstance(structured_data, dict):
            raise ValueError(
                f"[{self.provider_name}] Expected a JSON object, got "
                f"{type(structured_data).__name__}"
            )
        return structured_data or {}, self._extract_usage(response)
