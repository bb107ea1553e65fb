"""Editable calculator expressions built one key at a time.

An expression is a list of tokens: numeric constants that are still being
typed, operators (including functions and named constants), and references
to previously evaluated expressions that are shown in abbreviated form.
Evaluation renders the tokens to canonical text and hands it to the SymPy
parser; references become names that resolve to cached results.
"""

from __future__ import annotations

import json
import re
from fractions import Fraction
from typing import Optional

from .creal import tdiv
from .display_policy import ELLIPSIS, add_commas
from .logging_config import get_logger
from .parser import evaluate_eval_text, preprocess
from .real_value import RealValue
from .types import ExpressionSyntaxError

logger = get_logger("expression")

DIGITS = "0123456789"
DECIMAL_POINT = "."
BINARY_OPS = ("+", "-", "*", "/", "^")
PREFIX_OPS = ("-",)
FUNCTIONS = ("sqrt", "sin", "cos", "tan", "asin", "acos", "atan", "ln", "log", "exp")
TRIG_FUNCTIONS = ("sin", "cos", "tan", "asin", "acos", "atan")
SUFFIX_OPS = ("!", "%")
CONSTANTS = ("pi", "e")
PARENS = ("(", ")")
TEN_POW = "10^"

OPERATOR_KEYS = BINARY_OPS + FUNCTIONS + SUFFIX_OPS + CONSTANTS + PARENS
ALL_KEYS = tuple(DIGITS) + (DECIMAL_POINT, TEN_POW) + OPERATOR_KEYS

# Largest exponent magnitude accepted while typing digits into an exponent
MAX_TYPED_EXPONENT = 10_000

_DISPLAY = {
    "*": "×",
    "/": "÷",
    "-": "−",
    "pi": "π",
    "sqrt": "√(",
}

_EVAL_TEXT = {
    "e": "E",
    "pi": "pi",
}


def is_binary(key: str) -> bool:
    return key in BINARY_OPS


def is_prefix(key: str) -> bool:
    return key in PREFIX_OPS


def is_function(key: str) -> bool:
    return key in FUNCTIONS


def is_trig_function(key: str) -> bool:
    return key in TRIG_FUNCTIONS


class Constant:
    """A number being entered: whole digits, fraction digits and an exponent."""

    kind = "constant"

    def __init__(self) -> None:
        self.whole = ""
        self.fraction = ""
        self.saw_decimal = False
        self.exponent = 0

    @property
    def is_empty(self) -> bool:
        return not self.saw_decimal and not self.whole

    def add(self, key: str) -> bool:
        if key == DECIMAL_POINT:
            if self.saw_decimal or self.exponent != 0:
                return False
            self.saw_decimal = True
            return True
        value = int(key)
        if self.exponent != 0:
            if abs(self.exponent) > MAX_TYPED_EXPONENT:
                return False
            if self.exponent > 0:
                self.exponent = 10 * self.exponent + value
            else:
                self.exponent = 10 * self.exponent - value
            return True
        if self.saw_decimal:
            self.fraction += key
        else:
            self.whole += key
        return True

    def add_exponent(self, exp: int) -> None:
        self.exponent = exp

    def delete(self) -> None:
        if self.exponent != 0:
            self.exponent = tdiv(self.exponent, 10)
        elif self.fraction:
            self.fraction = self.fraction[:-1]
        elif self.saw_decimal:
            self.saw_decimal = False
        else:
            self.whole = self.whole[:-1]

    def to_rational(self) -> Fraction:
        whole = self.whole
        if not whole:
            if not self.fraction:
                raise ExpressionSyntaxError("Number without digits")
            whole = "0"
        num = int(whole + self.fraction)
        den = 10 ** len(self.fraction)
        if self.exponent > 0:
            num *= 10**self.exponent
        elif self.exponent < 0:
            den *= 10 ** (-self.exponent)
        return Fraction(num, den)

    def eval_text(self) -> str:
        if not self.whole and not self.fraction:
            raise ExpressionSyntaxError("Number without digits")
        text = self.whole or "0"
        if self.fraction:
            text += "." + self.fraction
        if self.exponent != 0:
            text += f"e{self.exponent}"
        return text

    def __str__(self) -> str:
        if self.exponent != 0:
            result = self.whole
        else:
            result = add_commas(self.whole, 0, len(self.whole))
        if self.saw_decimal:
            result += "." + self.fraction
        if self.exponent != 0:
            result += f"E{self.exponent}"
        return result

    def clone(self) -> Constant:
        result = Constant()
        result.whole = self.whole
        result.fraction = self.fraction
        result.saw_decimal = self.saw_decimal
        result.exponent = self.exponent
        return result

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "whole": self.whole,
            "fraction": self.fraction,
            "saw_decimal": self.saw_decimal,
            "exponent": self.exponent,
        }


class Operator:
    """Any non-digit key: operators, parentheses, functions and constants."""

    kind = "operator"

    def __init__(self, key: str) -> None:
        if key not in OPERATOR_KEYS:
            raise ValueError(f"Unknown operator key: {key}")
        self.key = key

    def eval_text(self) -> str:
        if is_function(self.key):
            return self.key + "("
        return _EVAL_TEXT.get(self.key, self.key)

    def __str__(self) -> str:
        if self.key in _DISPLAY:
            return _DISPLAY[self.key]
        if is_function(self.key):
            return self.key + "("
        return self.key

    def to_dict(self) -> dict:
        return {"kind": self.kind, "key": self.key}


class PreEval:
    """Reference to the stored expression at ``index``, displayed as ``short_rep``."""

    kind = "pre_eval"

    def __init__(self, index: int, short_rep: str) -> None:
        self.index = index
        self.short_rep = short_rep

    @property
    def name(self) -> str:
        if self.index < 0:
            return f"_rm{-self.index}"
        return f"_r{self.index}"

    def has_ellipsis(self) -> bool:
        return ELLIPSIS in self.short_rep

    def __str__(self) -> str:
        return self.short_rep

    def to_dict(self) -> dict:
        return {"kind": self.kind, "index": self.index, "short_rep": self.short_rep}


def _token_from_dict(data: dict):
    kind = data.get("kind")
    if kind == Constant.kind:
        token = Constant()
        token.whole = data["whole"]
        token.fraction = data["fraction"]
        token.saw_decimal = data["saw_decimal"]
        token.exponent = data["exponent"]
        return token
    if kind == Operator.kind:
        return Operator(data["key"])
    if kind == PreEval.kind:
        return PreEval(data["index"], data["short_rep"])
    raise ValueError(f"Bad token kind: {kind!r}")


class ExprResolver:
    """Access to stored expressions and their cached values, by index."""

    def expr_get(self, index: int) -> CalculatorExpr:
        raise NotImplementedError

    def degree_mode_get(self, index: int) -> bool:
        raise NotImplementedError

    def result_get(self, index: int) -> Optional[RealValue]:
        raise NotImplementedError

    def put_result_if_absent(self, index: int, result: RealValue) -> RealValue:
        raise NotImplementedError


def _ends_operand(text: str) -> bool:
    return text not in BINARY_OPS and not text.endswith("(")


def _factor_start(out: list[str]) -> Optional[int]:
    """Index in out where the factor ending at the last element begins."""
    i = len(out) - 1
    if i < 0:
        return None
    if out[i] == ")":
        depth = 0
        while i >= 0:
            if out[i] == ")":
                depth += 1
            elif out[i].endswith("("):
                depth -= 1
                if depth == 0:
                    return i
            i -= 1
        return None
    if not _ends_operand(out[i]):
        return None
    return i


_TEXT_TOKEN_REGEX = re.compile(
    r"""
    (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)
    | (?P<name>[A-Za-z]+)\s*(?P<paren>\()?
    | (?P<op>[-+*/^()!%])
    | (?P<space>\s+)
    """,
    re.VERBOSE,
)
_EXPONENT_REGEX = re.compile(r"[eE]([-+]?\d+)$")


class CalculatorExpr:
    """A calculator expression, edited by adding keys at the end."""

    def __init__(self, tokens: Optional[list] = None) -> None:
        self.tokens = tokens if tokens is not None else []

    @property
    def is_empty(self) -> bool:
        return not self.tokens

    @property
    def is_constant(self) -> bool:
        return len(self.tokens) == 1 and isinstance(self.tokens[0], Constant)

    def __len__(self) -> int:
        return len(self.tokens)

    def __str__(self) -> str:
        return "".join(str(t) for t in self.tokens)

    def __repr__(self) -> str:
        return f"CalculatorExpr({str(self)!r})"

    def to_text(self) -> str:
        """Display form: operators as symbols, references as their abbreviations."""
        return str(self)

    # Editing

    def has_trailing_constant(self) -> bool:
        return bool(self.tokens) and isinstance(self.tokens[-1], Constant)

    def has_trailing_binary(self) -> bool:
        return (
            bool(self.tokens)
            and isinstance(self.tokens[-1], Operator)
            and is_binary(self.tokens[-1].key)
        )

    def add(self, key: str) -> bool:
        """Append a key, returning False if it cannot follow the current tokens.

        A binary operator replaces any trailing binary operators. Digits and
        the decimal point extend a trailing constant.
        """
        last = self.tokens[-1] if self.tokens else None
        last_op = last.key if isinstance(last, Operator) else None
        if is_binary(key) and not is_prefix(key):
            if (
                last is None
                or last_op == "("
                or (last_op is not None and is_function(last_op))
                or (last_op is not None and is_prefix(last_op) and last_op != "-")
            ):
                return False
            while self.has_trailing_binary():
                self.delete()
        if key in DIGITS or key == DECIMAL_POINT:
            if not isinstance(last, Constant):
                if isinstance(last, PreEval):
                    self.tokens.append(Operator("*"))
                self.tokens.append(Constant())
            return self.tokens[-1].add(key)
        if key not in OPERATOR_KEYS:
            raise ValueError(f"Unknown key: {key}")
        self.tokens.append(Operator(key))
        return True

    def add_exponent(self, exp: int) -> None:
        """Set the exponent of the trailing constant."""
        if not self.has_trailing_constant():
            raise ExpressionSyntaxError("Exponent without a number")
        self.tokens[-1].add_exponent(exp)

    def delete(self) -> None:
        """Remove the last key typed."""
        if not self.tokens:
            return
        last = self.tokens[-1]
        if isinstance(last, Constant):
            last.delete()
            if not last.is_empty:
                return
        self.tokens.pop()

    def clear(self) -> None:
        self.tokens.clear()

    def remove_trailing_additive_operators(self) -> None:
        while (
            self.tokens
            and isinstance(self.tokens[-1], Operator)
            and self.tokens[-1].key in ("+", "-")
        ):
            self.delete()

    def append(self, other: CalculatorExpr) -> None:
        """Append other, multiplying implicitly if neither side has an operator at the seam."""
        if self.tokens and other.tokens:
            if not isinstance(self.tokens[-1], Operator) and not isinstance(
                other.tokens[0], Operator
            ):
                self.tokens.append(Operator("*"))
        self.tokens.extend(other.tokens)

    def add_text(self, text: str) -> None:
        """Add the keys spelled out by typed text.

        Function names may be followed by an opening parenthesis, which is
        part of the function key. Raises ExpressionSyntaxError on characters
        or keys that cannot be added.
        """
        processed = preprocess(text)
        pos = 0
        while pos < len(processed):
            m = _TEXT_TOKEN_REGEX.match(processed, pos)
            if m is None:
                raise ExpressionSyntaxError(
                    f"Unexpected character {processed[pos]!r} at position {pos}"
                )
            pos = m.end()
            if m.group("number"):
                number = m.group("number")
                exp_match = _EXPONENT_REGEX.search(number)
                mantissa = number[: exp_match.start()] if exp_match else number
                self._add_keys(mantissa)
                if exp_match:
                    self.add_exponent(int(exp_match.group(1)))
            elif m.group("name"):
                name = m.group("name")
                if is_function(name):
                    self._add_keys([name])
                elif name in CONSTANTS:
                    self._add_keys([name])
                    if m.group("paren"):
                        self._add_keys(["("])
                else:
                    raise ExpressionSyntaxError(f"Unknown name: {name}")
            elif m.group("op"):
                self._add_keys([m.group("op")])

    def _add_keys(self, keys) -> None:
        for key in keys:
            if not self.add(key):
                raise ExpressionSyntaxError(f"Unexpected {key!r}")

    def clone(self) -> CalculatorExpr:
        return CalculatorExpr(
            [t.clone() if isinstance(t, Constant) else t for t in self.tokens]
        )

    def abbreviate(self, index: int, short_rep: str) -> CalculatorExpr:
        """Return an expression consisting of a single reference to index."""
        return CalculatorExpr([PreEval(index, short_rep)])

    # Queries

    def trailing_binary_ops_start(self) -> int:
        result = len(self.tokens)
        while result > 0:
            last = self.tokens[result - 1]
            if not isinstance(last, Operator) or not is_binary(last.key):
                break
            result -= 1
        return result

    def has_interesting_ops(self) -> bool:
        """Would evaluating this show something the user has not typed?

        A lone (possibly negated) number is not interesting; neither is a
        reference whose abbreviation is already exact.
        """
        last = self.trailing_binary_ops_start()
        first = 0
        if last > first and isinstance(self.tokens[0], Operator) and self.tokens[0].key == "-":
            first += 1
        for token in self.tokens[first:last]:
            if isinstance(token, Operator):
                return True
            if isinstance(token, PreEval) and token.has_ellipsis():
                return True
        return False

    def has_trig_funcs(self) -> bool:
        return any(
            isinstance(t, Operator) and is_trig_function(t.key) for t in self.tokens
        )

    def _add_referenced_exprs(self, found: list[int], resolver: ExprResolver) -> None:
        for token in self.tokens:
            if isinstance(token, PreEval):
                if resolver.result_get(token.index) is None and token.index not in found:
                    found.append(token.index)

    def get_transitively_referenced_exprs(self, resolver: ExprResolver) -> list[int]:
        """Indices of unevaluated expressions referenced directly or indirectly.

        Ordered so that every expression comes after those it references.
        """
        found: list[int] = []
        self._add_referenced_exprs(found, resolver)
        scanned = 0
        while scanned != len(found):
            resolver.expr_get(found[scanned])._add_referenced_exprs(found, resolver)
            scanned += 1
        found.reverse()
        return found

    # Evaluation

    def to_eval_text(self, end: Optional[int] = None) -> tuple[str, dict[str, int]]:
        """Render tokens[:end] as text the parser understands.

        Returns the text and a mapping from reference names to expression
        indices. Unclosed parentheses are closed. A percentage added to or
        subtracted from a preceding expression scales that expression.
        """
        if end is None:
            end = self.trailing_binary_ops_start()
        tokens = self.tokens[:end]
        names: dict[str, int] = {}
        out: list[str] = []
        levels = [0]

        def operand_text(token) -> str:
            if isinstance(token, PreEval):
                names[token.name] = token.index
                return token.name
            return token.eval_text()

        i = 0
        while i < len(tokens):
            token = tokens[i]
            key = token.key if isinstance(token, Operator) else None
            if key in ("+", "-") and out and _ends_operand(out[-1]) and self._is_percent(i + 1, end):
                start = levels[-1]
                operand = operand_text(tokens[i + 1])
                out[start:] = ["(", *out[start:], ")", "*", "(", "1", key, operand, "/", "100", ")"]
                i += 3
                continue
            if key == "%":
                start = _factor_start(out)
                if start is None:
                    raise ExpressionSyntaxError("Percent sign without a value")
                out.insert(start, "(")
                out.extend(["/", "100", ")"])
            elif key == "!":
                start = _factor_start(out)
                if start is None:
                    raise ExpressionSyntaxError("Factorial without a value")
                out.insert(start, "factorial(")
                out.append(")")
            else:
                text = operand_text(token)
                out.append(text)
                if text.endswith("("):
                    levels.append(len(out))
                elif text == ")" and len(levels) > 1:
                    levels.pop()
            i += 1
        out.extend(")" * (len(levels) - 1))
        return " ".join(out), names

    def _is_percent(self, pos: int, end: int) -> bool:
        if end < pos + 2:
            return False
        following = self.tokens[pos + 1]
        if not isinstance(following, Operator) or following.key != "%":
            return False
        if isinstance(self.tokens[pos], Operator):
            return False
        if end == pos + 2:
            return True
        after = self.tokens[pos + 2]
        return isinstance(after, Operator) and after.key in ("+", "-", ")")

    def _eval_prefix(self, degree_mode: bool, resolver: ExprResolver) -> RealValue:
        text, names = self.to_eval_text()
        if not text:
            raise ExpressionSyntaxError("Empty expression")
        references = {}
        for name, index in names.items():
            value = resolver.result_get(index)
            if value is None:
                value = self.nested_eval(index, resolver)
            references[name] = value
        logger.debug(f"Evaluating {text!r}")
        return evaluate_eval_text(text, degree_mode, references)

    def nested_eval(self, index: int, resolver: ExprResolver) -> RealValue:
        """Evaluate the stored expression at index and cache its value."""
        nested = resolver.expr_get(index)
        value = nested._eval_prefix(resolver.degree_mode_get(index), resolver)
        return resolver.put_result_if_absent(index, value)

    def eval(self, degree_mode: bool, resolver: ExprResolver) -> RealValue:
        """Evaluate, ignoring trailing binary operators.

        Referenced expressions without cached values are evaluated first,
        innermost first.
        """
        for index in self.get_transitively_referenced_exprs(resolver):
            self.nested_eval(index, resolver)
        return self._eval_prefix(degree_mode, resolver)

    # Serialization

    def to_list(self) -> list[dict]:
        return [t.to_dict() for t in self.tokens]

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_list(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_list(cls, data: list[dict]) -> CalculatorExpr:
        return cls([_token_from_dict(item) for item in data])

    @classmethod
    def from_bytes(cls, data: bytes) -> CalculatorExpr:
        try:
            return cls.from_list(json.loads(data.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"Bad serialized expression: {e}") from e

    @classmethod
    def from_text(cls, text: str) -> CalculatorExpr:
        expr = cls()
        expr.add_text(text)
        return expr
