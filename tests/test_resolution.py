"""Tests for prompt-variable settlement."""

import pytest

from smartflow.core.models import (
    CollectionSpec,
    ConditionGroup,
    ConditionRule,
    FieldSpec,
    GeneratedField,
    StepKind,
    StepSpec,
)
from smartflow.flow.resolution import (
    are_prompt_variables_resolved,
    is_settled,
    unresolved_variables,
)

GREETING = "Hello {{employeeName}}, you work at {{company.name}}"


@pytest.fixture
def steps():
    return [
        StepSpec(
            id="employee",
            title="Employee",
            fields=[
                FieldSpec(name="employeeName", label="Employee name"),
                FieldSpec(
                    name="bonus",
                    label="Bonus",
                    conditions=ConditionGroup(
                        rules=[ConditionRule(field="hasBonus", operator="equals", value=True)]
                    ),
                ),
            ],
        ),
        StepSpec(
            id="company",
            title="Company",
            fields=[FieldSpec(name="industry", label="Industry")],
            enrichment_prompt="Look up {{industry}}",
            enrichment_output_schema={"properties": {"company": {"type": "object"}}},
        ),
        StepSpec(
            id="offer",
            title="Offer",
            kind=StepKind.DYNAMIC,
            dynamic_prompt=GREETING,
        ),
        StepSpec(
            id="extras",
            title="Extras",
            conditions="needsExtras == true",
            fields=[FieldSpec(name="extraTerms", label="Extra terms")],
        ),
        StepSpec(
            id="witnesses",
            title="Witnesses",
            kind=StepKind.COLLECTION,
            collection=CollectionSpec(field_name="witnessList"),
        ),
    ]


class TestGreetingPrompt:
    """employeeName filled, company produced by enrichment on a later step."""

    def test_unresolved_before_enrichment_step(self, steps):
        values = {"employeeName": "Ada"}
        assert not are_prompt_variables_resolved(GREETING, values, {}, steps, 0)
        assert unresolved_variables(GREETING, values, {}, steps, 0) == ["company"]

    def test_unresolved_while_on_enrichment_step(self, steps):
        values = {"employeeName": "Ada"}
        assert not are_prompt_variables_resolved(GREETING, values, {}, steps, 1)

    def test_resolved_after_passing_enrichment_step_without_key(self, steps):
        values = {"employeeName": "Ada"}
        assert are_prompt_variables_resolved(GREETING, values, {}, steps, 2)

    def test_resolved_once_enrichment_arrives(self, steps):
        values = {"employeeName": "Ada"}
        enrichment = {"company": {"name": "Acme"}}
        assert are_prompt_variables_resolved(GREETING, values, enrichment, steps, 0)


class TestIsSettled:
    def test_filled_value(self, steps):
        assert is_settled("employeeName", {"employeeName": "Ada"}, {}, steps, 0)

    def test_false_counts_as_filled(self, steps):
        assert is_settled("employeeName", {"employeeName": False}, {}, steps, 0)

    def test_empty_field_on_current_step_unsettled(self, steps):
        assert not is_settled("employeeName", {}, {}, steps, 0)

    def test_empty_field_on_passed_step_settled(self, steps):
        assert is_settled("employeeName", {"employeeName": ""}, {}, steps, 1)

    def test_hidden_field_settled(self, steps):
        assert is_settled("bonus", {}, {}, steps, 0)

    def test_revealed_field_unsettled_until_passed(self, steps):
        values = {"hasBonus": True}
        assert not is_settled("bonus", values, {}, steps, 0)
        assert is_settled("bonus", values, {}, steps, 1)

    def test_hidden_step_settles_its_fields(self, steps):
        assert is_settled("extraTerms", {}, {}, steps, 0)
        assert not is_settled("extraTerms", {"needsExtras": True}, {}, steps, 3)

    def test_collection_field(self, steps):
        assert not is_settled("witnessList", {}, {}, steps, 4)
        assert is_settled("witnessList", {"witnessList": [{"name": "Bo"}]}, {}, steps, 4)

    def test_generated_field_owned_by_dynamic_step(self, steps):
        generated = {
            "offer": [GeneratedField(id="g1", name="startDate", label="Start date")]
        }
        assert not is_settled("startDate", {}, {}, steps, 2, generated=generated)
        assert is_settled("startDate", {}, {}, steps, 3, generated=generated)

    def test_unknown_variable_fails_open(self, steps, caplog):
        with caplog.at_level("WARNING"):
            assert is_settled("mystery", {}, {}, steps, 0)
        assert "mystery" in caplog.text

    def test_unknown_variable_fail_closed(self, steps):
        assert not is_settled("mystery", {}, {}, steps, 0, fail_open=False)

    def test_unknown_variable_warned_once_per_set(self, steps, caplog):
        warned = set()
        with caplog.at_level("WARNING"):
            is_settled("mystery", {}, {}, steps, 0, warned=warned)
            is_settled("mystery", {}, {}, steps, 0, warned=warned)
        assert caplog.text.count("mystery") == 1
        assert warned == {"mystery"}

    def test_separate_sessions_each_warn(self, steps, caplog):
        with caplog.at_level("WARNING"):
            is_settled("mystery", {}, {}, steps, 0, warned=set())
            is_settled("mystery", {}, {}, steps, 0, warned=set())
        assert caplog.text.count("mystery") == 2

    def test_unresolved_variables_shares_warned_set(self, steps, caplog):
        warned = {"mystery"}
        with caplog.at_level("WARNING"):
            assert unresolved_variables("{{mystery}}", {}, {}, steps, 0, warned=warned) == []
        assert "mystery" not in caplog.text


class TestArePromptVariablesResolved:
    def test_no_variables_is_vacuously_true(self, steps):
        assert are_prompt_variables_resolved("Plain prompt", {}, {}, steps, 0)
        assert are_prompt_variables_resolved(None, {}, {}, steps, 0)

    def test_monotone_in_current_index(self, steps):
        values = {"employeeName": "Ada"}
        results = [
            are_prompt_variables_resolved(GREETING, values, {}, steps, i)
            for i in range(len(steps))
        ]
        first_true = results.index(True)
        assert all(results[first_true:])
