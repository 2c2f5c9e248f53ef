"""Prompt-variable settlement.

A variable is settled when it will not change again before a prompt that
references it is sent: it already has a value, its field is hidden, or the
user has moved past the step that would produce it.

``current_index`` is always a position in the full step list (not the
visible projection), so "past a step" compares raw positions.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..core.models import GeneratedField, StepSpec
from ..utils.templates import extract_prompt_variables
from ..utils.values import is_empty_value
from .conditions import evaluate_conditions

logger = logging.getLogger(__name__)


def _find_field_owner(
    variable: str,
    steps: Sequence[StepSpec],
    generated: Mapping[str, Sequence[GeneratedField]] | None,
) -> tuple[int, StepSpec, Any] | None:
    """Locate the step that collects ``variable``.

    Returns (step position, step, predicate of the field).
    """
    for i, step in enumerate(steps):
        for field in step.fields:
            if field.name == variable:
                return i, step, field.conditions
        if step.collection is not None and step.collection.field_name == variable:
            return i, step, None
        if generated and step.id in generated:
            if any(g.name == variable for g in generated[step.id]):
                return i, step, None
    return None


def is_settled(
    variable: str,
    values: Mapping[str, Any],
    enrichment: Mapping[str, Any],
    steps: Sequence[StepSpec],
    current_index: int,
    *,
    fail_open: bool = True,
    generated: Mapping[str, Sequence[GeneratedField]] | None = None,
    warned: set[str] | None = None,
) -> bool:
    """Decide whether ``variable`` is settled at ``current_index``.

    Args:
        variable: Root variable name from a prompt template
        values: Current value map
        enrichment: Current enrichment context
        steps: Full step list in flow order
        current_index: Position in ``steps`` of the step the user is on
        fail_open: Verdict for names no field or enrichment declares
        generated: Cached generated fields per dynamic step id; these are
            treated like fields owned by their step
        warned: Unknown names already reported for this session; when
            given, each unknown name is logged once and added to it
    """
    if not is_empty_value(values.get(variable)) or not is_empty_value(
        enrichment.get(variable)
    ):
        return True

    owner = _find_field_owner(variable, steps, generated)
    if owner is not None:
        index, step, conditions = owner
        if not evaluate_conditions(step.conditions, values):
            return True
        if not evaluate_conditions(conditions, values):
            return True
        return current_index > index

    for index, step in enumerate(steps):
        if variable in step.declared_outputs():
            return current_index > index

    if warned is None or variable not in warned:
        if warned is not None:
            warned.add(variable)
        verdict = "settled" if fail_open else "unsettled"
        logger.warning(
            f"Prompt variable {variable!r} is not collected by any field or "
            f"enrichment output; treating it as {verdict}"
        )
    return fail_open


def unresolved_variables(
    prompt: str | None,
    values: Mapping[str, Any],
    enrichment: Mapping[str, Any],
    steps: Sequence[StepSpec],
    current_index: int,
    *,
    fail_open: bool = True,
    generated: Mapping[str, Sequence[GeneratedField]] | None = None,
    warned: set[str] | None = None,
) -> list[str]:
    """Variables in ``prompt`` that are not yet settled, in first-seen order."""
    return [
        name
        for name in extract_prompt_variables(prompt)
        if not is_settled(
            name,
            values,
            enrichment,
            steps,
            current_index,
            fail_open=fail_open,
            generated=generated,
            warned=warned,
        )
    ]


def are_prompt_variables_resolved(
    prompt: str | None,
    values: Mapping[str, Any],
    enrichment: Mapping[str, Any],
    steps: Sequence[StepSpec],
    current_index: int,
    *,
    fail_open: bool = True,
    generated: Mapping[str, Sequence[GeneratedField]] | None = None,
    warned: set[str] | None = None,
) -> bool:
    """True when every variable in ``prompt`` is settled (vacuously for none)."""
    for name in extract_prompt_variables(prompt):
        if not is_settled(
            name,
            values,
            enrichment,
            steps,
            current_index,
            fail_open=fail_open,
            generated=generated,
            warned=warned,
        ):
            return False
    return True
