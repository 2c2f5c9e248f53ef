"""Interfaces of the external services the engine consumes.

The engine only ever talks to these ABCs; concrete LLM-backed or
HTTP-backed implementations are injected at construction.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from ..core.models import GeneratedFields, SubmissionResult


class DynamicFieldRequest(BaseModel):
    """Everything the generator needs to produce one step's fields."""

    step_id: str
    prompt: str
    values: dict[str, Any] = Field(default_factory=dict)
    enrichment: dict[str, Any] = Field(default_factory=dict)
    max_fields: int = Field(default=5, ge=1, le=20)
    step_title: str = ""
    step_description: str = ""


class EnrichmentRequest(BaseModel):
    """One background enrichment call for a departed step."""

    step_id: str
    prompt: str
    values: dict[str, Any] = Field(default_factory=dict)
    output_schema: dict[str, Any] | None = None


class DynamicFieldService(ABC):
    """Generates fields for dynamic steps.

    Not assumed idempotent. The engine invokes it at most once per step per
    session unless the user retries a failed fetch.
    """

    @abstractmethod
    async def generate(self, request: DynamicFieldRequest) -> GeneratedFields:
        ...

    async def close(self) -> None:
        """Release any held resources."""


class EnrichmentService(ABC):
    """Computes side-channel context from earlier answers."""

    @abstractmethod
    async def enrich(self, request: EnrichmentRequest) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        """Release any held resources."""


class SubmissionService(ABC):
    """Terminal document generation.

    Implementations raise TokenExpiredError when the verification token is
    rejected, and any other exception for general failure.
    """

    @abstractmethod
    async def submit(self, values: dict[str, Any], token: str) -> SubmissionResult:
        ...

    async def close(self) -> None:
        """Release any held resources."""
