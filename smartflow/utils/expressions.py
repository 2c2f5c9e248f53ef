"""Expression name extraction for visibility predicates.

Returns simple types (set[str]) so callers in flow, CLI and validation
code can share it without coupling to template models.
"""

import ast
import re


BUILTIN_NAMES = frozenset(
    {
        "True",
        "False",
        "true",
        "false",
        "None",
        "abs",
        "min",
        "max",
        "int",
        "float",
        "str",
        "len",
        "bool",
        "and",
        "or",
        "not",
        "in",
        "is",
        "if",
        "else",
    }
)


def extract_names_from_expression(expr: str) -> set[str]:
    """Extract variable names from a Python expression.

    Uses AST parsing to identify variable references while ignoring
    string literals, builtins and keywords.

    Example:
        >>> extract_names_from_expression("jurisdiction == 'CA' and headcount > 50")
        {'jurisdiction', 'headcount'}
    """
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError:
        # Fallback to regex for malformed expressions
        cleaned = re.sub(r"'[^']*'", "", expr)
        cleaned = re.sub(r'"[^"]*"', "", cleaned)
        tokens = re.findall(r"\b([a-z_][a-z0-9_]*)\b", cleaned, re.IGNORECASE)
        return {t for t in tokens if t not in BUILTIN_NAMES}

    return {
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name) and node.id not in BUILTIN_NAMES
    }
