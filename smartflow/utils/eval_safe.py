"""Safe expression evaluation for visibility predicates.

Provides a restricted AST evaluator that only allows literals, names,
comparisons, boolean logic, simple arithmetic and subscripts. Attribute
access, imports, lambdas and dunder names are rejected.
"""

import ast
import operator
from typing import Any

# Safe builtins allowed in predicate evaluation
SAFE_BUILTINS = {
    "True": True,
    "False": False,
    "None": None,
    "true": True,
    "false": False,
    "abs": abs,
    "min": min,
    "max": max,
    "int": int,
    "float": float,
    "str": str,
    "len": len,
    "bool": bool,
}


class ExpressionError(Exception):
    """Raised when an expression cannot be evaluated."""

    pass


class ConditionError(Exception):
    """Raised when a visibility predicate fails and the caller asked to know."""

    pass


_SAFE_BIN_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}
_SAFE_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}
_SAFE_CMP_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _eval_ast(node: ast.AST, context: dict[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _eval_ast(node.body, context)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id.startswith("__"):
            raise ExpressionError("dunder names are not allowed in expressions")
        if node.id in context:
            return context[node.id]
        if node.id in SAFE_BUILTINS:
            return SAFE_BUILTINS[node.id]
        raise ExpressionError(f"Unknown name '{node.id}' in expression")

    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        items = [_eval_ast(elt, context) for elt in node.elts]
        if isinstance(node, ast.Set):
            return set(items)
        return tuple(items) if isinstance(node, ast.Tuple) else items

    if isinstance(node, ast.Subscript):
        container = _eval_ast(node.value, context)
        key = _eval_ast(node.slice, context)
        if container is None:
            return None
        try:
            return container[key]
        except (KeyError, IndexError, TypeError):
            return None

    if isinstance(node, ast.UnaryOp):
        op_type = type(node.op)
        if op_type not in _SAFE_UNARY_OPS:
            raise ExpressionError(f"Unary operator not allowed: {op_type.__name__}")
        return _SAFE_UNARY_OPS[op_type](_eval_ast(node.operand, context))

    if isinstance(node, ast.BinOp):
        op_type = type(node.op)
        if op_type not in _SAFE_BIN_OPS:
            raise ExpressionError(f"Binary operator not allowed: {op_type.__name__}")
        return _SAFE_BIN_OPS[op_type](
            _eval_ast(node.left, context), _eval_ast(node.right, context)
        )

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            for value in node.values:
                if not _eval_ast(value, context):
                    return False
            return True
        for value in node.values:
            if _eval_ast(value, context):
                return True
        return False

    if isinstance(node, ast.Compare):
        left = _eval_ast(node.left, context)
        for op, comparator in zip(node.ops, node.comparators):
            op_type = type(op)
            if op_type not in _SAFE_CMP_OPS:
                raise ExpressionError(
                    f"Comparison operator not allowed: {op_type.__name__}"
                )
            right = _eval_ast(comparator, context)
            # Unset operands satisfy only negative membership, never ordering
            if left is None or right is None:
                if op_type is ast.NotIn:
                    left = right
                    continue
                if op_type not in (ast.Eq, ast.NotEq, ast.Is, ast.IsNot):
                    return False
            if not _SAFE_CMP_OPS[op_type](left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.IfExp):
        return (
            _eval_ast(node.body, context)
            if _eval_ast(node.test, context)
            else _eval_ast(node.orelse, context)
        )

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name):
            raise ExpressionError("Only direct function calls are allowed")
        func = SAFE_BUILTINS.get(node.func.id)
        if not callable(func):
            raise ExpressionError(f"Function '{node.func.id}' is not allowed")
        if node.keywords or any(isinstance(a, ast.Starred) for a in node.args):
            raise ExpressionError("Only positional arguments are allowed")
        return func(*[_eval_ast(arg, context) for arg in node.args])

    raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def eval_safe(expression: str, context: dict[str, Any]) -> Any:
    """
    Safely evaluate a Python expression with restricted builtins.

    Args:
        expression: Python expression string (e.g., "jurisdiction == 'CA'")
        context: Dictionary of variable names to values

    Returns:
        Result of evaluating the expression

    Raises:
        ExpressionError: If evaluation fails

    Example:
        >>> eval_safe("salary > 50000 or has_equity", {"salary": 40000, "has_equity": True})
        True
    """
    try:
        tree = ast.parse(expression, mode="eval")
        return _eval_ast(tree, dict(context))
    except ExpressionError:
        raise
    except Exception as e:
        raise ExpressionError(f"Failed to evaluate '{expression}': {e}") from e


def eval_condition(
    condition: str,
    values: dict[str, Any],
    *,
    raise_on_error: bool = False,
) -> bool:
    """
    Evaluate a boolean visibility expression against collected values.

    Returns False (hidden) on evaluation errors by default. Set
    raise_on_error=True to raise ConditionError instead.
    """
    try:
        return bool(eval_safe(condition, values))
    except Exception as e:
        if raise_on_error:
            raise ConditionError(f"Condition '{condition}' failed: {e}") from e
        return False
