"""Pure utility functions for SmartFlow.

This module contains pure functions with ZERO dependencies on smartflow
models or other smartflow modules, so they can be imported from anywhere
without circular import risk.

Modules:
- eval_safe: Restricted expression evaluation
- expressions: Name extraction from predicate expressions
- templates: Prompt placeholder extraction and interpolation
- values: Emptiness checks, nested lookup, snapshots
"""

from .eval_safe import (
    eval_safe,
    eval_condition,
    ExpressionError,
    ConditionError,
    SAFE_BUILTINS,
)
from .expressions import extract_names_from_expression, BUILTIN_NAMES
from .templates import extract_prompt_variables, interpolate_prompt
from .values import is_empty_value, get_nested_value, snapshot

__all__ = [
    # Eval
    "eval_safe",
    "eval_condition",
    "ExpressionError",
    "ConditionError",
    "SAFE_BUILTINS",
    # Expressions
    "extract_names_from_expression",
    "BUILTIN_NAMES",
    # Templates
    "extract_prompt_variables",
    "interpolate_prompt",
    # Values
    "is_empty_value",
    "get_nested_value",
    "snapshot",
]
