"""Semantic checks for flow templates.

Structural problems (bad types, duplicate step ids) are already rejected
when the template is parsed. These checks catch templates that parse but
would misbehave at runtime:

ERROR
- DUPLICATE_FIELD: two fields share a value-map key
- DYNAMIC_WITHOUT_PROMPT: dynamic step has no generation prompt
- COLLECTION_WITHOUT_SCHEMA: collection step has no collection definition
- UNKNOWN_OPERATOR: condition rule uses an unsupported operator

WARNING
- UNKNOWN_CONDITION_FIELD: predicate reads a name no field collects
- UNRESOLVABLE_VARIABLE: prompt variable nothing produces (fails open)
- FORWARD_REFERENCE: prompt variable produced by the same or a later step
"""

from ..core.models import ConditionGroup, ConditionOperator, StepKind, TemplateSpec
from ..core.models.validation import Severity, ValidationIssue, ValidationResult
from ..utils.templates import extract_prompt_variables
from .conditions import condition_references, parse_conditions

_OPERATORS = {op.value for op in ConditionOperator}


def validate_template(template: TemplateSpec) -> ValidationResult:
    """Run every semantic check on ``template``."""
    issues: list[ValidationIssue] = []
    issues.extend(_check_duplicate_fields(template))
    issues.extend(_check_step_kinds(template))
    issues.extend(_check_conditions(template))
    issues.extend(_check_prompt_variables(template))
    return ValidationResult(issues=issues)


def _collected_names(template: TemplateSpec) -> dict[str, int]:
    """Every value-map key a step collects, mapped to its step position."""
    names: dict[str, int] = {}
    for i, step in enumerate(template.steps):
        for field in step.fields:
            names.setdefault(field.name, i)
        if step.collection is not None:
            names.setdefault(step.collection.field_name, i)
    return names


def _enrichment_outputs(template: TemplateSpec) -> dict[str, int]:
    outputs: dict[str, int] = {}
    for i, step in enumerate(template.steps):
        for key in step.declared_outputs():
            outputs.setdefault(key, i)
    return outputs


# =============================================================================
# Errors
# =============================================================================


def _check_duplicate_fields(template: TemplateSpec) -> list[ValidationIssue]:
    issues = []
    seen: dict[str, str] = {}
    for step in template.steps:
        for field in step.fields:
            if field.name in seen:
                issues.append(
                    ValidationIssue(
                        severity=Severity.ERROR,
                        category="DUPLICATE_FIELD",
                        location=f"{step.id}.{field.name}",
                        message=f"field name already used in step '{seen[field.name]}'",
                        suggestion="Rename one of the fields",
                    )
                )
            else:
                seen[field.name] = step.id
    return issues


def _check_step_kinds(template: TemplateSpec) -> list[ValidationIssue]:
    issues = []
    for step in template.steps:
        if step.kind == StepKind.DYNAMIC and not (step.dynamic_prompt or "").strip():
            issues.append(
                ValidationIssue(
                    severity=Severity.ERROR,
                    category="DYNAMIC_WITHOUT_PROMPT",
                    location=step.id,
                    message="dynamic step has no dynamic_prompt",
                    suggestion="Add a dynamic_prompt or change the step kind",
                )
            )
        if step.kind == StepKind.COLLECTION and step.collection is None:
            issues.append(
                ValidationIssue(
                    severity=Severity.ERROR,
                    category="COLLECTION_WITHOUT_SCHEMA",
                    location=step.id,
                    message="collection step has no collection definition",
                )
            )
    return issues


def _check_conditions(template: TemplateSpec) -> list[ValidationIssue]:
    issues = []
    known = set(_collected_names(template))

    predicates = []
    for step in template.steps:
        predicates.append((step.id, step.conditions))
        for field in step.fields:
            predicates.append((f"{step.id}.{field.name}", field.conditions))

    for location, conditions in predicates:
        if conditions is None:
            continue
        parsed = parse_conditions(conditions)
        if isinstance(parsed, ConditionGroup):
            for rule in parsed.rules:
                if rule.operator not in _OPERATORS:
                    issues.append(
                        ValidationIssue(
                            severity=Severity.ERROR,
                            category="UNKNOWN_OPERATOR",
                            location=location,
                            message=f"unsupported operator '{rule.operator}'",
                            suggestion=f"Use one of: {', '.join(sorted(_OPERATORS))}",
                            value=rule.operator,
                        )
                    )
        for name in sorted(condition_references(conditions) - known):
            issues.append(
                ValidationIssue(
                    severity=Severity.WARNING,
                    category="UNKNOWN_CONDITION_FIELD",
                    location=location,
                    message=f"condition references '{name}', which no field collects",
                    suggestion="Unset names never satisfy equality rules",
                    value=name,
                )
            )
    return issues


# =============================================================================
# Warnings
# =============================================================================


def _check_prompt_variables(template: TemplateSpec) -> list[ValidationIssue]:
    issues = []
    collected = _collected_names(template)
    outputs = _enrichment_outputs(template)

    for i, step in enumerate(template.steps):
        prompts = [("dynamic_prompt", step.dynamic_prompt)]
        prompts.append(("enrichment_prompt", step.enrichment_prompt))
        for attr, prompt in prompts:
            for name in extract_prompt_variables(prompt):
                source = collected.get(name, outputs.get(name))
                if source is None:
                    issues.append(
                        ValidationIssue(
                            severity=Severity.WARNING,
                            category="UNRESOLVABLE_VARIABLE",
                            location=step.id,
                            message=(
                                f"{attr} variable '{name}' is not collected by any "
                                f"field or enrichment output"
                            ),
                            suggestion="The prompt will be sent without it",
                            value=name,
                        )
                    )
                elif attr == "dynamic_prompt" and source >= i:
                    issues.append(
                        ValidationIssue(
                            severity=Severity.WARNING,
                            category="FORWARD_REFERENCE",
                            location=step.id,
                            message=(
                                f"variable '{name}' comes from step "
                                f"'{template.steps[source].id}', which is not before this one"
                            ),
                            suggestion="Fields will only load once the user reaches this step",
                            value=name,
                        )
                    )
    return issues
