"""Value helpers shared by the flow components."""

import copy
from collections.abc import Mapping
from typing import Any


def is_empty_value(value: Any) -> bool:
    """True for None, blank strings and empty collections.

    False and 0 are real answers and count as filled.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, Mapping)):
        return len(value) == 0
    return False


def get_nested_value(mapping: Any, path: str) -> Any:
    """Resolve a dotted path ("company.name") against nested mappings.

    Returns None when any segment is missing.
    """
    current = mapping
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def snapshot(values: Mapping[str, Any]) -> dict[str, Any]:
    """Deep copy of a value map for hand-off to a background call."""
    return copy.deepcopy(dict(values))
