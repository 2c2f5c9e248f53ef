"""Prompt template helpers.

Prompt templates reference collected values with ``{{name}}`` placeholders,
optionally as dotted paths into nested values (``{{company.name}}``).
"""

import re
from typing import Any

from .values import get_nested_value

_PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+)\}\}")


def extract_prompt_variables(template: str | None) -> list[str]:
    """Return the root variable names referenced by a prompt template.

    Names are trimmed, dotted paths contribute only their first segment and
    duplicates are dropped in first-seen order. Unterminated or empty
    placeholders are ignored; a stray ``{{`` does not hide a well-formed
    placeholder after it.

    Example:
        >>> extract_prompt_variables("Hello {{employeeName}}, you work at {{company.name}}")
        ['employeeName', 'company']
    """
    if not template:
        return []

    variables: list[str] = []
    for match in _PLACEHOLDER_RE.finditer(template):
        name = match.group(1).strip()
        root = name.split(".")[0].strip()
        if root and root not in variables:
            variables.append(root)
    return variables


def interpolate_prompt(template: str, context: dict[str, Any]) -> str:
    """Replace resolvable placeholders with their values.

    Placeholders whose value is missing or None are left untouched so the
    downstream model can still see what was asked for.
    """

    def _replace(match: re.Match) -> str:
        value = get_nested_value(context, match.group(1).strip())
        if value is None:
            return match.group(0)
        if isinstance(value, bool):
            return "yes" if value else "no"
        return str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)
