"""Runtime session models for SmartFlow.

These describe what the engine publishes to a rendering layer: flow phase,
background-work indicators and command results. None of them are
persisted.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FlowPhase(str, Enum):
    WELCOME = "welcome"
    IN_FLOW = "in_flow"
    SUBMITTING = "submitting"
    COMPLETE = "complete"


class VerificationStatus(str, Enum):
    REQUIRED = "required"
    SUCCESS = "success"
    ERROR = "error"
    EXPIRED = "expired"


class EnrichmentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class EnrichmentIndicator(BaseModel):
    """Banner state for background enrichment."""

    status: EnrichmentStatus = EnrichmentStatus.IDLE
    step_title: str | None = None
    message: str | None = None


class DynamicStepState(str, Enum):
    """Status of a dynamic step's generated content."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    STUCK = "stuck"


class StandardsResult(BaseModel):
    """Outcome of one 'apply standards' command."""

    step_id: str
    applied: list[str] = Field(default_factory=list)
    iterations: int = 0
    converged: bool = True


class SubmissionResult(BaseModel):
    """Document payload returned by the submission service."""

    document: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
