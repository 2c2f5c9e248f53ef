"""LLM client facade for SmartFlow.

Two-tier routing:
- fast: enrichment_call → uses models.fast
- strong: generation_call → uses models.strong

Model strings use "provider/model" format. The provider is extracted to route
to the correct backend; the model name is passed through.

Configure via `smartflow config` CLI or programmatically via smartflow.config.configure().
"""

from .providers import get_cached_provider
from .providers.base import TokenUsage
from ..config import get_config, parse_model_string


__all__ = [
    "json_call_async",
    "generation_call_async",
    "enrichment_call_async",
    "TokenUsage",
]


async def json_call_async(
    prompt: str,
    model: str,
    *,
    system: str | None = None,
    response_schema: dict | None = None,
    schema_name: str = "response",
    max_tokens: int | None = None,
) -> tuple[dict, TokenUsage]:
    """Route a JSON call to the provider named in ``model`` ("provider/model")."""
    provider_name, model_name = parse_model_string(model)
    provider = get_cached_provider(provider_name)
    return await provider.json_call_async(
        prompt,
        system=system,
        response_schema=response_schema,
        schema_name=schema_name,
        model=model_name,
        max_tokens=max_tokens,
    )


async def generation_call_async(
    prompt: str,
    *,
    system: str | None = None,
    response_schema: dict | None = None,
    schema_name: str = "generated_fields",
    model: str | None = None,
) -> tuple[dict, TokenUsage]:
    """Dynamic field generation. Uses the STRONG tier (config.models.strong)."""
    model_string = model or get_config().models.strong
    return await json_call_async(
        prompt,
        model_string,
        system=system,
        response_schema=response_schema,
        schema_name=schema_name,
    )


async def enrichment_call_async(
    prompt: str,
    *,
    system: str | None = None,
    model: str | None = None,
) -> tuple[dict, TokenUsage]:
    """Background enrichment. Uses the FAST tier (config.models.fast).

    The reply is any JSON object; its shape is described in the prompt.
    """
    model_string = model or get_config().models.fast
    return await json_call_async(
        prompt, model_string, system=system, schema_name="enrichment"
    )
