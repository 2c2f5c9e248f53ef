"""'Apply standards': fill empty visible fields with recommended values.

Filling one field can reveal another that also has a recommendation, so
the applicator repeats until no visible empty candidate remains or the
iteration ceiling is hit. Visibility is recomputed in-process between
rounds; there is no delay.
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from ..core.models import FieldSpec, StandardsResult, StepSpec
from ..utils.values import get_nested_value, is_empty_value
from .conditions import evaluate_conditions
from .state import FlowState

logger = logging.getLogger(__name__)


class StandardsApplicator:
    def __init__(self, state: FlowState, *, max_iterations: int = 5):
        self.state = state
        self.max_iterations = max_iterations

    def suggestions_from_context(self, step: StepSpec) -> dict[str, Any]:
        """Recommendations for ``step`` read from the enrichment context.

        Each field's ``suggestion_key`` is a dotted path into the context.
        Missing or empty entries are left out.
        """
        enrichment = self.state.enrichment
        suggestions: dict[str, Any] = {}
        for field in step.fields:
            if not field.suggestion_key:
                continue
            value = get_nested_value(enrichment, field.suggestion_key)
            if not is_empty_value(value):
                suggestions[field.name] = value
        return suggestions

    def has_standards(self, step: StepSpec) -> bool:
        """Whether any recommendation exists for the step right now."""
        if step.is_dynamic:
            generated = self.state.generated_fields(step.id) or []
            return any(not is_empty_value(g.standard_value) for g in generated)
        return bool(self.suggestions_from_context(step))

    def apply_suggestions(
        self, step: StepSpec, suggestions: Mapping[str, Any] | None = None
    ) -> StandardsResult:
        """Standard-step variant over the step's declared fields.

        Args:
            step: Step whose fields are filled
            suggestions: Field name to recommended value; read from the
                enrichment context when omitted
        """
        if suggestions is None:
            suggestions = self.suggestions_from_context(step)
        recommended = {
            name: value
            for name, value in suggestions.items()
            if not is_empty_value(value)
        }
        return self._apply(step, list(step.fields), recommended)

    def apply_generated(self, step: StepSpec) -> StandardsResult:
        """Dynamic-step variant over cached generated fields."""
        generated = self.state.generated_fields(step.id) or []
        fields = [g.as_field_spec() for g in generated]
        recommended = {
            g.name: g.standard_value
            for g in generated
            if not is_empty_value(g.standard_value)
        }
        return self._apply(step, fields, recommended)

    def _apply(
        self,
        step: StepSpec,
        fields: list[FieldSpec],
        recommended: dict[str, Any],
    ) -> StandardsResult:
        applied: list[str] = []
        iterations = 0
        converged = False

        while iterations < self.max_iterations:
            candidates = self._candidates(fields, recommended)
            if not candidates:
                converged = True
                break
            iterations += 1
            for field in candidates:
                # An earlier write this round may have filled it
                if not is_empty_value(self.state.values.get(field.name)):
                    continue
                self.state.set_value(field.name, copy.deepcopy(recommended[field.name]))
                applied.append(field.name)
        else:
            converged = not self._candidates(fields, recommended)

        if not converged:
            logger.warning(
                f"Standards for step '{step.id}' did not settle within "
                f"{self.max_iterations} iteration(s)"
            )
        logger.info(f"Applied standards to step '{step.id}': {applied}")
        return StandardsResult(
            step_id=step.id, applied=applied, iterations=iterations, converged=converged
        )

    def _candidates(
        self, fields: list[FieldSpec], recommended: dict[str, Any]
    ) -> list[FieldSpec]:
        values = self.state.values
        return [
            f
            for f in fields
            if f.name in recommended
            and is_empty_value(values.get(f.name))
            and evaluate_conditions(f.conditions, values)
        ]

