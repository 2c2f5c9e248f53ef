"""Core infrastructure for SmartFlow.

This package contains shared infrastructure used by the flow engine:
- llm: LLM call wrappers (generation_call_async, enrichment_call_async)
- providers: Provider clients and registry
- models: All Pydantic models organized by domain
- errors: Error taxonomy and user-facing messages

Note: LLM functions are not eagerly imported so core.models works without
the provider SDKs loaded. Use:
    from smartflow.core.llm import generation_call_async
    from smartflow.core.providers import get_cached_provider
"""

__all__ = [
    "errors",
    "llm",
    "models",
    "providers",
]
