"""Input preprocessing and SymPy-based evaluation.

This module handles:
- Input sanitization and validation of typed text
- Symbol normalization (unicode operators, superscripts, square roots)
- Parsing of canonical expression text with SymPy, without evaluation
- Translation of the parsed tree into exact-where-possible RealValue results
"""

from __future__ import annotations

import re
from fractions import Fraction
from tokenize import TokenError
from typing import Any, Callable, Mapping, Optional

import sympy as sp
from sympy import parse_expr

from . import real_value as rv
from .config import (
    ALLOWED_SYMPY_NAMES,
    FACTORIAL,
    LOG10,
    MAX_INPUT_LENGTH,
    SQRT_UNICODE_ATOM_REGEX,
    SQRT_UNICODE_REGEX,
    TRANSFORMATIONS,
)
from .logging_config import get_logger
from .real_value import RealValue
from .types import DomainError, ExpressionSyntaxError, ValidationError

logger = get_logger("parser")


def is_balanced(input_str: str, allow_unclosed: bool = False) -> tuple[bool, int | None]:
    """Check if parentheses are balanced. Returns (is_balanced, error_position).

    With ``allow_unclosed`` only a closing parenthesis without a partner is an
    error; evaluation closes any that are left open.
    """
    stack: list[int] = []
    for i, char in enumerate(input_str):
        if char == "(":
            stack.append(i)
        elif char == ")":
            if not stack:
                return False, i
            stack.pop()
    if stack and not allow_unclosed:
        return False, stack[0]
    return True, None


# Basic denylist to avoid dangerous tokens before SymPy parsing
FORBIDDEN_TOKENS = (
    "__",
    "import",
    "lambda",
    "eval",
    "exec",
    "open",
    "os.",
    "sys.",
    "subprocess",
    "builtins",
    "getattr",
    "setattr",
    "compile",
    "globals",
    "locals",
)

SYMBOL_REPLACEMENTS = (
    ("−", "-"),
    ("–", "-"),
    ("π", "pi"),
    ("×", "*"),
    ("·", "*"),
    ("÷", "/"),
    ("**", "^"),
)

_FROM_SUPERSCRIPT = {
    "⁰": "0",
    "¹": "1",
    "²": "2",
    "³": "3",
    "⁴": "4",
    "⁵": "5",
    "⁶": "6",
    "⁷": "7",
    "⁸": "8",
    "⁹": "9",
    "⁻": "-",
}
_SUPERSCRIPT_REGEX = re.compile(f"([{''.join(_FROM_SUPERSCRIPT)}]+)")


def preprocess(input_str: str) -> str:
    """Normalize typed input before it is split into calculator keys.

    Applies transformations:
    - Validates input length, quotes and forbidden tokens
    - Standardizes mathematical symbols (unicode variants to ASCII)
    - Converts superscripts to ``^`` exponents
    - Converts the unicode square root to ``sqrt(``
    - Validates that no closing parenthesis is unmatched

    Args:
        input_str: Raw input string from user

    Returns:
        Normalized string

    Raises:
        ValidationError: If input is empty, too long, contains forbidden
                        tokens, or has an unmatched closing parenthesis
    """
    input_str = input_str.strip() if input_str else ""
    if not input_str:
        raise ValidationError("Input cannot be empty", "EMPTY_INPUT")
    if len(input_str) > MAX_INPUT_LENGTH:
        raise ValidationError(
            f"Input too long (>{MAX_INPUT_LENGTH} characters)", "TOO_LONG"
        )
    if input_str.count('"') or input_str.count("'"):
        raise ValidationError("Quotes are not allowed in expressions", "UNMATCHED_QUOTES")

    lowered = input_str.lower()
    for tok in FORBIDDEN_TOKENS:
        if tok in lowered:
            logger.warning(
                "Blocked input containing forbidden token",
                extra={"forbidden_token": tok, "input_length": len(input_str)},
            )
            raise ValidationError(
                f"Input contains forbidden token: {tok}", "FORBIDDEN_TOKEN"
            )

    processed_str = input_str
    for old, new in SYMBOL_REPLACEMENTS:
        processed_str = processed_str.replace(old, new)

    def from_superscript(m: re.Match) -> str:
        return "^(" + "".join(_FROM_SUPERSCRIPT[char] for char in m.group(1)) + ")"

    processed_str = _SUPERSCRIPT_REGEX.sub(from_superscript, processed_str)
    processed_str = SQRT_UNICODE_REGEX.sub("sqrt(", processed_str)
    processed_str = SQRT_UNICODE_ATOM_REGEX.sub(r"sqrt(\1)", processed_str)
    processed_str = re.sub(r"\s+", " ", processed_str).strip()

    balanced, error_pos = is_balanced(processed_str, allow_unclosed=True)
    if not balanced:
        start = max(0, error_pos - 10)
        context = processed_str[start : error_pos + 10]
        pointer = " " * (error_pos - start) + "^"
        raise ValidationError(
            f"Unmatched closing parenthesis at position {error_pos}: {context}\n{pointer}",
            "UNBALANCED_PARENS",
        )
    return processed_str


def parse_preprocessed(expr_str: str, reference_names: tuple[str, ...] = ()) -> Any:
    """Parse canonical expression text into an unevaluated SymPy tree.

    Args:
        expr_str: Text produced by ``CalculatorExpr.to_eval_text``
        reference_names: Names standing for results of other expressions

    Returns:
        SymPy expression built with ``evaluate=False``

    Raises:
        ExpressionSyntaxError: If the text does not parse
    """
    if not expr_str.strip():
        raise ExpressionSyntaxError("Empty expression")
    local_dict = dict(ALLOWED_SYMPY_NAMES)
    for name in reference_names:
        local_dict[name] = sp.Symbol(name)
    try:
        return parse_expr(
            expr_str,
            local_dict=local_dict,
            transformations=TRANSFORMATIONS,
            evaluate=False,
        )
    except (SyntaxError, TokenError, TypeError, ValueError, AttributeError) as e:
        logger.debug(f"Parse failed for {expr_str!r}: {e}")
        raise ExpressionSyntaxError(f"Syntax error: {expr_str}") from e


_UNDEFINED_VALUES = (sp.nan, sp.zoo, sp.oo, -sp.oo)


def _to_radians(x: RealValue, degree_mode: bool) -> RealValue:
    return x.multiply(rv.RADIANS_PER_DEGREE) if degree_mode else x


def _from_radians(x: RealValue, degree_mode: bool) -> RealValue:
    return x.divide(rv.RADIANS_PER_DEGREE) if degree_mode else x


def to_real_value(
    node: Any,
    degree_mode: bool = False,
    resolve: Optional[Callable[[str], RealValue]] = None,
) -> RealValue:
    """Evaluate an unevaluated SymPy tree to a RealValue.

    Args:
        node: Tree returned by parse_preprocessed
        degree_mode: Interpret trigonometric arguments and results in degrees
        resolve: Maps a reference name to the value it stands for

    Raises:
        DomainError: For undefined operations (including division by zero)
        ExpressionSyntaxError: For constructs the calculator does not support
    """

    def walk(n: Any) -> RealValue:
        if any(n is u for u in _UNDEFINED_VALUES):
            raise DomainError("Undefined value")
        if isinstance(n, sp.Rational):
            return RealValue(Fraction(int(n.p), int(n.q)))
        if isinstance(n, sp.Float):
            return RealValue(Fraction(str(n)))
        if n is sp.pi:
            return rv.PI
        if n is sp.E:
            return rv.E
        if isinstance(n, sp.Symbol):
            if resolve is None:
                raise ExpressionSyntaxError(f"Unknown name: {n.name}")
            return resolve(n.name)
        if isinstance(n, sp.Add):
            result = walk(n.args[0])
            for arg in n.args[1:]:
                result = result.add(walk(arg))
            return result
        if isinstance(n, sp.Mul):
            result = walk(n.args[0])
            for arg in n.args[1:]:
                if isinstance(arg, sp.Pow) and arg.exp == -1:
                    result = result.divide(walk(arg.base))
                else:
                    result = result.multiply(walk(arg))
            return result
        if isinstance(n, sp.Pow):
            base = walk(n.base)
            if n.exp == -1:
                return base.inverse()
            if n.exp == sp.S.Half:
                return base.sqrt()
            return base.pow(walk(n.exp))
        if isinstance(n, (sp.sin, sp.cos, sp.tan)):
            arg = _to_radians(walk(n.args[0]), degree_mode)
            if isinstance(n, sp.sin):
                return arg.sin()
            if isinstance(n, sp.cos):
                return arg.cos()
            return arg.tan()
        if isinstance(n, sp.asin):
            return _from_radians(walk(n.args[0]).asin(), degree_mode)
        if isinstance(n, sp.acos):
            return _from_radians(walk(n.args[0]).acos(), degree_mode)
        if isinstance(n, sp.atan):
            return _from_radians(walk(n.args[0]).atan(), degree_mode)
        if isinstance(n, sp.exp):
            return walk(n.args[0]).exp()
        if isinstance(n, sp.log):
            if len(n.args) == 2:
                return walk(n.args[0]).ln().divide(walk(n.args[1]).ln())
            return walk(n.args[0]).ln()
        if isinstance(n, sp.Function) and n.func == LOG10:
            if len(n.args) != 1:
                raise ExpressionSyntaxError("log takes one argument")
            return walk(n.args[0]).log10()
        if isinstance(n, sp.Function) and n.func == FACTORIAL:
            if len(n.args) != 1:
                raise ExpressionSyntaxError("factorial takes one argument")
            return walk(n.args[0]).fact()
        raise ExpressionSyntaxError(f"Unsupported expression: {type(n).__name__}")

    return walk(node)


def evaluate_eval_text(
    expr_str: str,
    degree_mode: bool = False,
    references: Optional[Mapping[str, RealValue]] = None,
) -> RealValue:
    """Parse and evaluate canonical expression text.

    Args:
        expr_str: Canonical text, see ``CalculatorExpr.to_eval_text``
        degree_mode: Use degrees for trigonometric functions
        references: Values of the reference names appearing in the text

    Returns:
        The value of the expression
    """
    references = references or {}
    tree = parse_preprocessed(expr_str, tuple(references))

    def resolve(name: str) -> RealValue:
        try:
            return references[name]
        except KeyError:
            raise ExpressionSyntaxError(f"Unknown name: {name}") from None

    return to_real_value(tree, degree_mode, resolve)
