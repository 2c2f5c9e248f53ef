"""External services consumed by the flow engine."""

from .base import (
    DynamicFieldRequest,
    DynamicFieldService,
    EnrichmentRequest,
    EnrichmentService,
    SubmissionService,
)
from .llm_services import (
    LLMDynamicFieldService,
    LLMEnrichmentService,
    sanitize_generated_fields,
)
from .local import LocalSubmissionService
from .verification import VerificationTokenStore

__all__ = [
    "DynamicFieldRequest",
    "DynamicFieldService",
    "EnrichmentRequest",
    "EnrichmentService",
    "SubmissionService",
    "LLMDynamicFieldService",
    "LLMEnrichmentService",
    "sanitize_generated_fields",
    "LocalSubmissionService",
    "VerificationTokenStore",
]
