"""Visibility predicate evaluation.

A predicate can be authored three ways:
- a ConditionGroup (rules combined with and/or)
- the JSON encoding of a ConditionGroup, as stored by template editors
- a restricted Python boolean expression, e.g. "jurisdiction == 'CA'"

Missing predicates mean "always visible". An unset field (None, blank or
missing) satisfies only negative clauses such as notEquals/notIn, never
equals/in/ordering clauses.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from ..core.models import ConditionGroup, ConditionOperator, ConditionRule
from ..utils.eval_safe import eval_condition
from ..utils.expressions import extract_names_from_expression
from ..utils.values import get_nested_value, is_empty_value

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _equals(field_value: Any, compare_value: Any) -> bool:
    if _is_unset(field_value):
        return False
    field_bool = _as_bool(field_value)
    compare_bool = _as_bool(compare_value)
    if field_bool is not None and compare_bool is not None:
        return field_bool == compare_bool
    if isinstance(field_value, bool) or isinstance(compare_value, bool):
        return False
    return field_value == compare_value


def _contains(field_value: Any, compare_value: Any) -> bool | None:
    """None when the operands can't be compared."""
    if isinstance(field_value, str) and isinstance(compare_value, str):
        return compare_value.lower() in field_value.lower()
    if isinstance(field_value, (list, tuple)):
        return compare_value in field_value
    return None


def _compare(field_value: Any, compare_value: Any, op: str) -> bool:
    left = _as_number(field_value)
    right = _as_number(compare_value)
    if left is None or right is None:
        return False
    if op == ConditionOperator.GREATER_THAN:
        return left > right
    if op == ConditionOperator.LESS_THAN:
        return left < right
    if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    return left <= right


def evaluate_rule(rule: ConditionRule, values: Mapping[str, Any]) -> bool:
    """Evaluate one rule against the value map."""
    field_value = get_nested_value(values, rule.field)
    compare_value = rule.value
    op = rule.operator

    if op == ConditionOperator.EQUALS:
        return _equals(field_value, compare_value)
    if op == ConditionOperator.NOT_EQUALS:
        return _is_unset(field_value) or not _equals(field_value, compare_value)
    if op == ConditionOperator.CONTAINS:
        return bool(_contains(field_value, compare_value))
    if op == ConditionOperator.NOT_CONTAINS:
        result = _contains(field_value, compare_value)
        return True if result is None else not result
    if op == ConditionOperator.IS_EMPTY:
        return is_empty_value(field_value)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not is_empty_value(field_value)
    if op in (
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_THAN_OR_EQUAL,
        ConditionOperator.LESS_THAN_OR_EQUAL,
    ):
        return _compare(field_value, compare_value, op)
    if op == ConditionOperator.IN:
        if _is_unset(field_value) or not isinstance(compare_value, (list, tuple)):
            return False
        return any(_equals(field_value, candidate) for candidate in compare_value)
    if op == ConditionOperator.NOT_IN:
        if _is_unset(field_value) or not isinstance(compare_value, (list, tuple)):
            return True
        return not any(_equals(field_value, candidate) for candidate in compare_value)
    if op in (ConditionOperator.STARTS_WITH, ConditionOperator.ENDS_WITH):
        if not (isinstance(field_value, str) and isinstance(compare_value, str)):
            return False
        if op == ConditionOperator.STARTS_WITH:
            return field_value.lower().startswith(compare_value.lower())
        return field_value.lower().endswith(compare_value.lower())

    logger.warning(f"Unknown condition operator {op!r} on field {rule.field!r}")
    return True


def _evaluate_group(group: ConditionGroup, values: Mapping[str, Any]) -> bool:
    if not group.rules:
        return True
    results = (evaluate_rule(rule, values) for rule in group.rules)
    if group.operator == "or":
        return any(results)
    return all(results)


def parse_conditions(conditions: Any) -> ConditionGroup | str | None:
    """Normalize an authored predicate.

    Returns a ConditionGroup, an expression string, or None when the
    predicate is absent or unreadable (unreadable predicates are logged
    and treated as absent).
    """
    if conditions is None:
        return None
    if isinstance(conditions, ConditionGroup):
        return conditions
    if isinstance(conditions, str):
        text = conditions.strip()
        if not text:
            return None
        if not text.startswith("{"):
            return text
        try:
            conditions = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse conditions JSON {text[:60]!r}: {e}")
            return None
    if isinstance(conditions, Mapping):
        try:
            return ConditionGroup.model_validate(dict(conditions))
        except ValidationError as e:
            logger.warning(f"Invalid condition group: {e.error_count()} error(s)")
            return None
    logger.warning(f"Unsupported conditions type: {type(conditions).__name__}")
    return None


def evaluate_conditions(
    conditions: Any,
    values: Mapping[str, Any],
    *,
    raise_on_error: bool = False,
) -> bool:
    """Return True when the predicate shows its field or step.

    Args:
        conditions: ConditionGroup, its JSON string or dict, an expression
            string, or None
        values: Current value map
        raise_on_error: Raise ConditionError for failing expressions
            instead of hiding
    """
    parsed = parse_conditions(conditions)
    if parsed is None:
        return True
    if isinstance(parsed, ConditionGroup):
        return _evaluate_group(parsed, values)

    # Referenced-but-unset names evaluate as None
    context = {name: None for name in extract_names_from_expression(parsed)}
    context.update(values)
    return eval_condition(parsed, context, raise_on_error=raise_on_error)


def condition_references(conditions: Any) -> set[str]:
    """Root field names a predicate reads."""
    parsed = parse_conditions(conditions)
    if parsed is None:
        return set()
    if isinstance(parsed, ConditionGroup):
        return {rule.field.split(".")[0] for rule in parsed.rules}
    return extract_names_from_expression(parsed)
