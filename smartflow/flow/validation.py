"""Step-local field validation.

Only the checks the flow itself gates on: required fields, email format,
and the entries of a collection step. Errors are keyed by field name
(collection entries by ``<field>.<index>.<item>``).
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from ..core.models import FieldSpec, FieldType, StepSpec
from ..utils.values import is_empty_value

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

EMAIL_MESSAGE = "Please enter a valid email address"


def validate_field(field: FieldSpec, value: Any) -> str | None:
    """Return an error message for ``value``, or None if it's acceptable."""
    if is_empty_value(value):
        if field.required:
            return f"{field.label} is required"
        return None
    if field.type == FieldType.EMAIL:
        if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
            return EMAIL_MESSAGE
    return None


def _validate_collection(step: StepSpec, values: Mapping[str, Any]) -> dict[str, str]:
    spec = step.collection
    if spec is None:
        return {}
    errors: dict[str, str] = {}
    raw = values.get(spec.field_name)
    entries = raw if isinstance(raw, list) else []

    filled = [
        (i, entry)
        for i, entry in enumerate(entries)
        if isinstance(entry, Mapping)
        and any(not is_empty_value(v) for v in entry.values())
    ]

    if len(filled) < spec.min_items:
        noun = spec.item_label.lower()
        plural = "" if spec.min_items == 1 else "s"
        errors[spec.field_name] = f"Please add at least {spec.min_items} {noun}{plural}."
    elif spec.max_items is not None and len(filled) > spec.max_items:
        errors[spec.field_name] = (
            f"You can add at most {spec.max_items} {spec.item_label.lower()} entries."
        )

    for position, (i, entry) in enumerate(filled, start=1):
        for item in spec.item_fields:
            value = entry.get(item.name)
            key = f"{spec.field_name}.{i}.{item.name}"
            if is_empty_value(value):
                if item.required:
                    errors[key] = (
                        f"{spec.item_label} #{position} requires "
                        f"{item.label.lower()}."
                    )
                continue
            message = validate_field(item, value)
            if message:
                errors[key] = f"{spec.item_label} #{position}: {message}"
    return errors


def validate_step(
    step: StepSpec, fields: Sequence[FieldSpec], values: Mapping[str, Any]
) -> dict[str, str]:
    """Validate the visible ``fields`` of ``step`` plus its collection, if any."""
    errors: dict[str, str] = {}
    for field in fields:
        message = validate_field(field, values.get(field.name))
        if message:
            errors[field.name] = message
    errors.update(_validate_collection(step, values))
    return errors
