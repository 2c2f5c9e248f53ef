"""Flow engine: conditions, settlement, visibility and background work.

Pure queries:
- conditions: predicate evaluation
- resolution: prompt-variable settlement
- visibility: visible steps and fields

Stateful components, composed by FlowEngine:
- state: value map, enrichment context, dynamic cache
- prefetch: dynamic-step fetches
- enrichment: background enrichment runs
- standards: recommended-value application
- navigator: phases, position, submission
"""

from .conditions import (
    condition_references,
    evaluate_conditions,
    evaluate_rule,
    parse_conditions,
)
from .engine import FlowEngine
from .enrichment import EnrichmentRunner
from .navigator import FlowNavigator
from .prefetch import PrefetchScheduler
from .resolution import are_prompt_variables_resolved, is_settled, unresolved_variables
from .standards import StandardsApplicator
from .state import FlowState
from .tasks import BackgroundTasks
from .template_validator import validate_template
from .validation import validate_field, validate_step
from .visibility import VisibilityProjector, is_step_visible, visible_fields, visible_steps

__all__ = [
    "condition_references",
    "evaluate_conditions",
    "evaluate_rule",
    "parse_conditions",
    "FlowEngine",
    "EnrichmentRunner",
    "FlowNavigator",
    "PrefetchScheduler",
    "are_prompt_variables_resolved",
    "is_settled",
    "unresolved_variables",
    "StandardsApplicator",
    "FlowState",
    "BackgroundTasks",
    "validate_template",
    "validate_field",
    "validate_step",
    "VisibilityProjector",
    "is_step_visible",
    "visible_fields",
    "visible_steps",
]
