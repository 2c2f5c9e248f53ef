"""Abstract base class for LLM providers."""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

_MAX_API_RETRIES = 3


@dataclass
class TokenUsage:
    """Token usage from a single LLM API call."""

    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    All providers implement json_call_async with the same signature so they
    can be swapped through the "provider/model" config string.

    Args:
        api_key: API key or access token for the provider.
    """

    provider_name: str = "unknown"

    # Exceptions worth retrying with backoff (override in subclasses)
    _transient_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key
        self._cached_async_client = None

    async def close_async(self) -> None:
        """Close the cached async client to release connections cleanly.

        Must be called before the event loop shuts down to avoid
        'Event loop is closed' errors from orphaned httpx connections.
        """
        if self._cached_async_client is not None:
            await self._cached_async_client.close()
            self._cached_async_client = None

    async def _with_retry_async(
        self,
        fn: Callable[[], Awaitable[Any]],
        max_retries: int = _MAX_API_RETRIES,
    ) -> Any:
        """Retry an async API call on transient errors with exponential backoff."""
        for attempt in range(max_retries + 1):
            try:
                return await fn()
            except self._transient_errors as e:
                if attempt == max_retries:
                    raise
                wait = (2**attempt) + random.random()
                logger.warning(
                    f"[{self.provider_name}] Transient error "
                    f"({attempt + 1}/{max_retries + 1}): "
                    f"{type(e).__name__}: {e}. Retrying in {wait:.1f}s"
                )
                await asyncio.sleep(wait)

    @property
    @abstractmethod
    def default_fast_model(self) -> str:
        """Default model for background enrichment (fast, cheap)."""
        ...

    @property
    @abstractmethod
    def default_strong_model(self) -> str:
        """Default model for dynamic field generation."""
        ...

    @abstractmethod
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
        """Call the model and return its JSON object reply.

        With ``response_schema`` the reply is constrained to the schema;
        without it any JSON object is accepted.
        """
        ...
