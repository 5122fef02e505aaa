"""
Expression compilation and evaluation for a single asset.

An ``ExpressionEvaluator`` owns one ``VariableBindingTable`` and one parsed
expression. The expression is compiled once, against the variables already
declared in the table, and then evaluated any number of times as the table's
values change.

Expression syntax:
    Python expression syntax evaluated by ``simpleeval``, plus the spellings
    used by existing rule configurations, rewritten before parsing:

    - ``if(cond, a, b)`` -- conditional (both branches are evaluated).
    - ``a ^ b``          -- power.
    - ``a = b``          -- equality.
    - ``true`` / ``false`` constants.

    ``and``, ``or``, ``not``, comparisons, arithmetic and ``a if c else b``
    are plain Python.

Compile-time checks:
    Every name must be a bound variable, a constant or a library function
    (functions only in call position). Only numeric literals and the node
    types in ``_ALLOWED_NODES`` are accepted, so anything that compiles can
    only fail at evaluation time through arithmetic.

Arithmetic:
    Division and modulo follow IEEE semantics (``1/0`` is ``inf``, ``0/0``
    is ``nan``). Non-finite results and arithmetic errors raise
    ``EvaluationError``; ``check()`` turns those into a False decision.
"""

from __future__ import annotations

import ast
import io
import logging
import math
import tokenize
from collections import ChainMap
from collections.abc import Sequence
from typing import Any, Callable

from simpleeval import DEFAULT_OPERATORS, InvalidExpression, SimpleEval

from notification.rule.config import (
    MAX_VARS_DEFAULT,
    TruthinessPolicy,
    load_settings,
)
from notification.rule.logic.bindings import VariableBindingTable
from notification.rule.logic.result import Err, Ok, Result

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CompileError(Exception):
    """The expression is syntactically invalid or references unknown symbols."""

    def __init__(self, message: str, expression: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.expression = expression

    def __str__(self) -> str:
        if self.expression:
            return f"{self.message} (expression: {self.expression!r})"
        return self.message


class EvaluationError(Exception):
    """The expression could not produce a finite value."""

    def __init__(self, message: str, value: float | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.value = value


# ---------------------------------------------------------------------------
# Constant and function library
# ---------------------------------------------------------------------------

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "inf": math.inf,
    "nan": math.nan,
    "epsilon": 2.220446049250313e-16,
    "true": 1.0,
    "false": 0.0,
}


def _if(condition: Any, consequent: float, alternative: float) -> float:
    return consequent if condition else alternative


def _clamp(low: float, value: float, high: float) -> float:
    return max(low, min(value, high))


def _inrange(low: float, value: float, high: float) -> float:
    return 1.0 if low <= value <= high else 0.0


def _avg(*values: float) -> float:
    if not values:
        raise ValueError("avg() requires at least one argument")
    return math.fsum(values) / len(values)


def _sum(*values: float) -> float:
    return math.fsum(values)


def _sgn(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


def _frac(value: float) -> float:
    return value - math.trunc(value)


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "round": round,
    "trunc": math.trunc,
    "frac": _frac,
    "sgn": _sgn,
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "pow": math.pow,
    "hypot": math.hypot,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "sinh": math.sinh,
    "cosh": math.cosh,
    "tanh": math.tanh,
    "deg2rad": math.radians,
    "rad2deg": math.degrees,
    "min": min,
    "max": max,
    "avg": _avg,
    "sum": _sum,
    "clamp": _clamp,
    "inrange": _inrange,
    "if_": _if,
}


def _ieee_div(a: float, b: float) -> float:
    try:
        return a / b
    except ZeroDivisionError:
        if a == 0 or a != a:
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _ieee_floordiv(a: float, b: float) -> float:
    if b == 0:
        return _ieee_div(a, b)
    return a // b


def _ieee_mod(a: float, b: float) -> float:
    if b == 0:
        return math.nan
    return math.fmod(a, b)


def _float_pow(a: float, b: float) -> float:
    return math.pow(a, b)


OPERATORS: dict[type, Callable[..., Any]] = {
    **DEFAULT_OPERATORS,
    ast.Div: _ieee_div,
    ast.FloorDiv: _ieee_floordiv,
    ast.Mod: _ieee_mod,
    ast.Pow: _float_pow,
}

_ALLOWED_NODES: tuple[type, ...] = (
    ast.Expression,
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.And,
    ast.Or,
    ast.Not,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.USub,
    ast.UAdd,
    ast.Eq,
    ast.NotEq,
    ast.Gt,
    ast.GtE,
    ast.Lt,
    ast.LtE,
)

# Token rewrites applied before parsing. Keys are (token type, text).
_TOKEN_REWRITES: dict[tuple[int, str], str] = {
    (tokenize.OP, "^"): "**",
    (tokenize.OP, "="): "==",
    (tokenize.NAME, "if"): "if_",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_expression(text: str) -> str:
    """Rewrite rule-configuration spellings into Python expression syntax.

    ``if`` is only rewritten when immediately followed by ``(``, so Python's
    ``a if c else b`` keeps working.

    Raises
    ------
    CompileError
        If the text cannot be tokenized (unbalanced brackets, bad strings).
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(text.strip()).readline))
    except (tokenize.TokenError, SyntaxError) as exc:
        raise CompileError(f"Invalid expression: {exc}", text) from exc

    rewritten: list[tuple[int, str]] = []
    for i, tok in enumerate(tokens):
        replacement = _TOKEN_REWRITES.get((tok.type, tok.string))
        if tok.type == tokenize.NAME and tok.string == "if":
            following = tokens[i + 1] if i + 1 < len(tokens) else None
            if following is None or following.string != "(":
                replacement = None
        if tok.type in (tokenize.NL, tokenize.NEWLINE):
            rewritten.append((tokenize.OP, " "))
            continue
        rewritten.append((tok.type, replacement if replacement else tok.string))

    return tokenize.untokenize(rewritten).strip()


def is_triggered(value: float, policy: TruthinessPolicy) -> bool:
    """Map a finite expression value to a trigger decision."""
    if policy is TruthinessPolicy.STRICT_ONE:
        return value == 1.0
    return value != 0.0


def _validate_tree(tree: ast.AST, table: VariableBindingTable, text: str) -> None:
    call_targets: set[int] = set()
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise CompileError(
                f"Unsupported syntax: {type(node).__name__}", text
            )
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise CompileError("Only named functions can be called", text)
            if node.func.id not in FUNCTIONS:
                raise CompileError(f"Unknown function '{node.func.id}'", text)
            if node.keywords:
                raise CompileError(
                    f"Keyword arguments are not supported in '{node.func.id}'",
                    text,
                )
            call_targets.add(id(node.func))
        elif isinstance(node, ast.Constant):
            if not isinstance(node.value, (int, float)):
                raise CompileError(f"Unsupported literal {node.value!r}", text)
        elif isinstance(node, ast.Name) and id(node) not in call_targets:
            if node.id not in table and node.id not in CONSTANTS:
                raise CompileError(f"Undefined symbol '{node.id}'", text)


# ---------------------------------------------------------------------------
# ExpressionEvaluator
# ---------------------------------------------------------------------------


class ExpressionEvaluator:
    """One compiled expression bound to one variable binding table.

    Parameters
    ----------
    table : VariableBindingTable
        Variables visible to the expression. Names must be declared before
        ``compile`` is called.
    policy : TruthinessPolicy or None
        How ``check`` maps values to decisions. Defaults to the configured
        ``RULE_TRUTHINESS_POLICY``.
    """

    def __init__(
        self,
        table: VariableBindingTable,
        policy: TruthinessPolicy | None = None,
    ) -> None:
        self._table = table
        if policy is None:
            policy = load_settings().truthiness_policy
        self._policy = policy
        self._expression = ""
        self._parsed: ast.AST | None = None
        self._engine = SimpleEval(
            operators=OPERATORS,
            functions=FUNCTIONS,
            names=ChainMap(table, CONSTANTS),
        )

    @classmethod
    def build(
        cls,
        variables: Sequence[str],
        expression: str,
        capacity: int = MAX_VARS_DEFAULT,
        policy: TruthinessPolicy | None = None,
    ) -> Result[ExpressionEvaluator, CompileError]:
        """Declare ``variables`` in a new table and compile ``expression``.

        Variables beyond ``capacity`` are dropped with an error log; an
        expression that references them fails to compile.
        """
        table = VariableBindingTable(capacity)
        for i, name in enumerate(variables):
            if not table.declare(name):
                logger.error(
                    "Too many datapoints (>%d), ignoring %d remaining",
                    capacity,
                    len(variables) - i,
                )
                break

        evaluator = cls(table, policy=policy)
        result = evaluator.compile(expression)
        if not result.ok:
            return result
        return Ok(evaluator)

    @property
    def table(self) -> VariableBindingTable:
        return self._table

    @property
    def expression(self) -> str:
        return self._expression

    @property
    def policy(self) -> TruthinessPolicy:
        return self._policy

    @property
    def is_compiled(self) -> bool:
        return self._parsed is not None

    def compile(self, expression: str) -> Result[None, CompileError]:
        """Parse and validate ``expression`` against the bound variables.

        Can only succeed once per evaluator; a new expression needs a new
        evaluator.
        """
        if self._parsed is not None:
            raise RuntimeError("Expression already compiled; build a new evaluator")

        if not expression or not expression.strip():
            return Err(CompileError("Expression is empty", expression))

        try:
            normalized = normalize_expression(expression)
            try:
                tree = ast.parse(normalized, mode="eval")
            except SyntaxError as exc:
                raise CompileError(f"Syntax error: {exc.msg}", expression) from exc
            _validate_tree(tree, self._table, expression)
            parsed = self._engine.parse(normalized)
        except CompileError as exc:
            logger.error(
                "Failed to compile expression: Error: %s\tExpression: %s",
                exc.message,
                expression,
            )
            return Err(exc)

        self._expression = expression
        self._parsed = parsed
        logger.debug(
            "Compiled expression %r over variables %s",
            expression,
            self._table.names(),
        )
        return Ok()

    def evaluate(self) -> float:
        """Evaluate the compiled expression with the table's current values.

        Raises
        ------
        EvaluationError
            If the value is NaN or infinite, or arithmetic fails.
        """
        if self._parsed is None:
            raise RuntimeError("Expression has not been compiled")

        try:
            raw = self._engine.eval(self._expression, previously_parsed=self._parsed)
            value = float(raw)
        except (ArithmeticError, ValueError, TypeError, InvalidExpression) as exc:
            raise EvaluationError(f"unable to evaluate expression: {exc}") from exc

        if not math.isfinite(value):
            raise EvaluationError(
                f"expression evaluated to non-finite value {value}", value
            )
        return value

    def check(self) -> bool:
        """Evaluate and apply the truthiness policy; failures yield False."""
        try:
            value = self.evaluate()
        except EvaluationError as exc:
            logger.error(
                "Evaluation of %r failed: %s (variables=%s)",
                self._expression,
                exc.message,
                self._table.snapshot(),
            )
            return False

        triggered = is_triggered(value, self._policy)
        logger.debug(
            "Expression %r = %s -> %s", self._expression, value, triggered
        )
        return triggered
