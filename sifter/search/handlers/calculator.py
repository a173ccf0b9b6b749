"""
Calculator Handler - Inline arithmetic for queries like "7/3" or "(2+3)^2".

Uses simpleeval restricted to + - * / % ^ and parentheses (no names, no
functions, no builtins). Integer literals are promoted to floats before
evaluation, so division never truncates.

Evaluation is forgiving while the user is still typing: if "2+3*" does
not parse, the expression is shortened from the end until the longest
valid prefix evaluates ("2+3" -> 5).
"""

import ast
import math
import operator
import re
import subprocess

from loguru import logger
from simpleeval import InvalidExpression, NumberTooHigh, SimpleEval, safe_power

from sifter.errors import EvaluationError
from sifter.search.router import CalcResult

OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: safe_power,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

# Integer literal not already part of a decimal number
INTEGER_RE = re.compile(r"(?<![\d.])(\d+)(?![\d.])")


def promote_integers(expression: str) -> str:
    """Rewrite "7/3" as "7.0/3.0" and "^" as "**"."""
    return INTEGER_RE.sub(r"\1.0", expression).replace("^", "**")


class CalculatorHandler:
    """Evaluate arithmetic expressions."""

    name = "calculator"

    def __init__(self):
        self._evaluator = SimpleEval(operators=OPERATORS, functions={}, names={})

    def get_results(self, query: str) -> list[CalcResult]:
        return [self.evaluate(query)]

    def evaluate(self, text: str) -> CalcResult:
        """
        Evaluate an expression, falling back to its longest valid prefix.

        Returns:
            CalcResult with a value, or with an error message. Never raises.
        """
        expression = text.strip()
        candidate = expression

        while candidate:
            try:
                value = self._evaluate_exact(candidate)
            except (SyntaxError, InvalidExpression):
                candidate = candidate[:-1].rstrip()
                continue
            except EvaluationError as e:
                return CalcResult(expression=candidate, error=str(e))
            return CalcResult(expression=candidate, value=value)

        if expression:
            logger.debug(f"No evaluable prefix in {expression!r}")
        return CalcResult(expression=expression, error="Could not evaluate expression")

    def _evaluate_exact(self, expression: str) -> float:
        try:
            value = self._evaluator.eval(promote_integers(expression))
        except NumberTooHigh as e:
            raise EvaluationError("Number too large") from e
        except ZeroDivisionError as e:
            raise EvaluationError("Division by zero") from e
        except (OverflowError, ValueError) as e:
            raise EvaluationError(f"Math error: {e}") from e

        if isinstance(value, complex):
            raise EvaluationError("Math error: complex result")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidExpression(f"not a number: {value!r}")
        if math.isnan(value):
            raise EvaluationError("Math error: undefined result")
        if math.isinf(value):
            raise EvaluationError("Number too large")
        return float(value)

    def copy_to_clipboard(self, result: CalcResult) -> None:
        """Copy a result's value to the clipboard using wl-copy."""
        if not result.ok:
            return
        try:
            subprocess.Popen(
                ["wl-copy", result.display],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.debug("wl-copy not found, cannot copy to clipboard")
