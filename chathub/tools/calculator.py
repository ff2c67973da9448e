"""Arithmetic calculator tool.

Expressions are parsed with ``ast`` and only numeric literals, arithmetic
operators and parentheses are evaluated.
"""

import ast
import operator
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from chathub.errors import ToolExecutionError
from chathub.tools.base import Tool

MAX_EXPONENT = 1000
MAX_RESULT_BITS = 10_000

_BINARY_OPERATORS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalculatorInput(BaseModel):
    """Input schema for the calculator tool."""

    expression: str = Field(..., min_length=1, description='Arithmetic expression to evaluate, e.g. "(2 + 3) * 4"')


def _check_result_size(op: ast.operator, lhs: int | float, rhs: int | float) -> None:
    """Reject integer operations whose result would exceed MAX_RESULT_BITS before computing them."""
    if not (isinstance(lhs, int) and isinstance(rhs, int)):
        return
    match op:
        case ast.Pow() if rhs > 0 and abs(lhs) > 1:
            estimated_bits = (abs(lhs).bit_length() - 1) * rhs
        case ast.Mult():
            estimated_bits = abs(lhs).bit_length() + abs(rhs).bit_length() - 1
        case _:
            return
    if estimated_bits > MAX_RESULT_BITS:
        raise ToolExecutionError("Result is too large")


def _evaluate(node: ast.AST) -> int | float:
    match node:
        case ast.Expression(body=body):
            return _evaluate(body)
        case ast.Constant(value=value) if isinstance(value, int | float) and not isinstance(value, bool):
            return value
        case ast.BinOp(left=left, op=op, right=right) if type(op) in _BINARY_OPERATORS:
            lhs, rhs = _evaluate(left), _evaluate(right)
            if isinstance(op, ast.Pow) and abs(rhs) > MAX_EXPONENT:
                raise ToolExecutionError(f"Exponent too large (limit {MAX_EXPONENT})")
            _check_result_size(op, lhs, rhs)
            return _BINARY_OPERATORS[type(op)](lhs, rhs)
        case ast.UnaryOp(op=op, operand=operand) if type(op) in _UNARY_OPERATORS:
            return _UNARY_OPERATORS[type(op)](_evaluate(operand))
    raise ToolExecutionError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> int | float:
    """Evaluate an arithmetic expression.

    Raises:
        ToolExecutionError: If the expression is not plain arithmetic or cannot be computed
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ToolExecutionError(f"Invalid expression: {expression}") from e

    try:
        return _evaluate(tree)
    except ZeroDivisionError as e:
        raise ToolExecutionError("Division by zero") from e
    except OverflowError as e:
        raise ToolExecutionError("Result is too large") from e


def create_calculator_tool() -> Tool:
    """Create the calculator tool."""

    async def calculator(params: CalculatorInput) -> str:
        result = evaluate_expression(params.expression)
        if isinstance(result, float) and result.is_integer():
            result = int(result)
        return f"{params.expression.strip()} = {result}"

    return Tool(
        name="calculator",
        description=(
            "Evaluate an arithmetic expression. Use this for exact calculations instead of "
            "computing results yourself. Supports + - * / // % ** and parentheses."
        ),
        input_schema_class=CalculatorInput,
        handler=calculator,
        display_name="🧮 Calculating",
    )
