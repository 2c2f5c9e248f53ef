"""All Pydantic models for SmartFlow, organized by domain.

- template.py: Flow templates, steps, fields, conditions, generated fields
- session.py: Runtime phase, indicators and command results
- validation.py: Template validation issues
"""

from .template import (
    # Conditions
    ConditionOperator,
    ConditionRule,
    ConditionGroup,
    Conditions,
    # Fields
    FieldType,
    FieldSpec,
    # Steps
    StepKind,
    CollectionSpec,
    StepSpec,
    # Template
    TemplateSpec,
    # Generated content
    GeneratedField,
    GeneratedFields,
)
from .session import (
    FlowPhase,
    VerificationStatus,
    EnrichmentStatus,
    EnrichmentIndicator,
    DynamicStepState,
    StandardsResult,
    SubmissionResult,
)
from .validation import Severity, ValidationIssue, ValidationResult

__all__ = [
    "ConditionOperator",
    "ConditionRule",
    "ConditionGroup",
    "Conditions",
    "FieldType",
    "FieldSpec",
    "StepKind",
    "CollectionSpec",
    "StepSpec",
    "TemplateSpec",
    "GeneratedField",
    "GeneratedFields",
    "FlowPhase",
    "VerificationStatus",
    "EnrichmentStatus",
    "EnrichmentIndicator",
    "DynamicStepState",
    "StandardsResult",
    "SubmissionResult",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
]
