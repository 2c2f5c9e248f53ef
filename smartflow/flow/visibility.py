"""Visible-step projection and visible-field derivation."""

from collections.abc import Mapping, Sequence
from typing import Any

from ..core.models import FieldSpec, StepSpec
from .conditions import evaluate_conditions


def is_step_visible(step: StepSpec, values: Mapping[str, Any]) -> bool:
    return evaluate_conditions(step.conditions, values)


def visible_fields(step: StepSpec, values: Mapping[str, Any]) -> list[FieldSpec]:
    """Fields of ``step`` shown under ``values``. Derived fresh on every call."""
    return [f for f in step.fields if evaluate_conditions(f.conditions, values)]


def visible_steps(
    steps: Sequence[StepSpec], values: Mapping[str, Any]
) -> list[StepSpec]:
    return [step for step in steps if is_step_visible(step, values)]


class VisibilityProjector:
    """Ordered subsequence of steps currently shown to the user.

    ``project`` hands back the previous list object whenever the visible
    step ids are unchanged, so callers can use identity to skip work.
    """

    def __init__(self, steps: Sequence[StepSpec]):
        self._steps = list(steps)
        self._last_ids: tuple[str, ...] | None = None
        self._last: list[StepSpec] = []

    @property
    def steps(self) -> list[StepSpec]:
        return self._steps

    def project(self, values: Mapping[str, Any]) -> list[StepSpec]:
        projected = visible_steps(self._steps, values)
        ids = tuple(step.id for step in projected)
        if ids != self._last_ids:
            self._last_ids = ids
            self._last = projected
        return self._last

    def raw_index(self, step: StepSpec) -> int:
        """Position of ``step`` in the full step list."""
        for i, candidate in enumerate(self._steps):
            if candidate.id == step.id:
                return i
        raise KeyError(step.id)
