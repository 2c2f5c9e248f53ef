"""Tests for visible-step projection and field visibility."""

from smartflow.core.models import ConditionGroup, ConditionRule, FieldSpec, StepSpec
from smartflow.flow.visibility import (
    VisibilityProjector,
    is_step_visible,
    visible_fields,
    visible_steps,
)


def _ca_only():
    return ConditionGroup(rules=[ConditionRule(field="jurisdiction", operator="equals", value="CA")])


def _steps():
    return [
        StepSpec(id="basics", title="Basics", fields=[FieldSpec(name="jurisdiction", label="J")]),
        StepSpec(id="california", title="California", conditions=_ca_only()),
        StepSpec(id="staff", title="Staff", conditions="headcount > 0"),
        StepSpec(id="review", title="Review"),
    ]


class TestVisibleFields:
    def test_non_compete_follows_jurisdiction(self):
        step = StepSpec(
            id="terms",
            title="Terms",
            fields=[
                FieldSpec(name="term", label="Term"),
                FieldSpec(name="nonCompete", label="Non-compete", conditions=_ca_only()),
            ],
        )

        def names(values):
            return [f.name for f in visible_fields(step, values)]

        assert names({}) == ["term"]
        assert names({"jurisdiction": "CA"}) == ["term", "nonCompete"]
        assert names({"jurisdiction": "NY"}) == ["term"]

    def test_order_preserved(self):
        step = StepSpec(
            id="s",
            title="S",
            fields=[
                FieldSpec(name="b", label="B", order=2),
                FieldSpec(name="a", label="A", order=1),
            ],
        )
        assert [f.name for f in visible_fields(step, {})] == ["a", "b"]


class TestVisibleSteps:
    def test_subsequence_in_order(self):
        steps = _steps()
        shown = visible_steps(steps, {"headcount": 3})
        assert [s.id for s in shown] == ["basics", "staff", "review"]

    def test_step_visibility(self):
        steps = _steps()
        assert not is_step_visible(steps[1], {})
        assert is_step_visible(steps[1], {"jurisdiction": "CA"})


class TestVisibilityProjector:
    def test_identity_kept_when_unchanged(self):
        projector = VisibilityProjector(_steps())
        first = projector.project({})
        second = projector.project({"unrelated": "x"})
        assert first is second

    def test_new_list_when_visibility_changes(self):
        projector = VisibilityProjector(_steps())
        first = projector.project({})
        second = projector.project({"jurisdiction": "CA"})
        assert first is not second
        assert [s.id for s in second] == ["basics", "california", "review"]

    def test_raw_index(self):
        steps = _steps()
        projector = VisibilityProjector(steps)
        assert projector.raw_index(steps[2]) == 2
