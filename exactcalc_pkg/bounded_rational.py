"""Size-bounded rational arithmetic on top of :class:`fractions.Fraction`.

Every operation accepts ``None`` for an operand and returns ``None`` once a
result would grow beyond MAX_SIZE bits, so exact rational evaluation degrades
gracefully into constructive-real evaluation instead of exhausting memory.
"""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Optional

from .creal import check_cancelled, from_fraction, int_to_decimal, CReal
from .types import DivideByZeroError, DomainError

# Total size of numerator and denominator, in bits
MAX_SIZE = 10000

# Exponents longer than this many bits are never attempted exactly
MAX_EXPONENT_BITS = 1000

ZERO = Fraction(0)
ONE = Fraction(1)
MINUS_ONE = Fraction(-1)
HALF = Fraction(1, 2)
THIRD = Fraction(1, 3)
QUARTER = Fraction(1, 4)
SIXTH = Fraction(1, 6)
TWELVE = Fraction(12)

Rational = Optional[Fraction]


def too_big(r: Fraction) -> bool:
    if r.denominator == 1:
        return False
    return r.numerator.bit_length() + r.denominator.bit_length() > MAX_SIZE


def _bounded(r: Rational) -> Rational:
    if r is None or too_big(r):
        return None
    return r


def add(r1: Rational, r2: Rational) -> Rational:
    if r1 is None or r2 is None:
        return None
    return _bounded(r1 + r2)


def negate(r: Rational) -> Rational:
    return None if r is None else -r


def subtract(r1: Rational, r2: Rational) -> Rational:
    return add(r1, negate(r2))


def multiply(r1: Rational, r2: Rational) -> Rational:
    if r1 is None or r2 is None:
        return None
    return _bounded(r1 * r2)


def inverse(r: Rational) -> Rational:
    if r is None:
        return None
    if r == 0:
        raise DivideByZeroError()
    return 1 / r


def divide(r1: Rational, r2: Rational) -> Rational:
    return multiply(r1, inverse(r2))


def _exact_isqrt(n: int) -> Optional[int]:
    root = math.isqrt(n)
    return root if root * root == n else None


def sqrt(r: Rational) -> Rational:
    """Return the exact square root of r, or None if it is irrational."""
    if r is None:
        return None
    if r < 0:
        raise DomainError("sqrt(negative)")
    num_sqrt = _exact_isqrt(r.numerator)
    if num_sqrt is None:
        return None
    den_sqrt = _exact_isqrt(r.denominator)
    if den_sqrt is None:
        return None
    return Fraction(num_sqrt, den_sqrt)


def _raw_pow(r: Fraction, exp: int) -> Rational:
    if exp == 1:
        return r
    if exp == 0:
        return ONE
    if exp & 1:
        rest = _raw_pow(r, exp - 1)
        return None if rest is None else _bounded(rest * r)
    half = _raw_pow(r, exp >> 1)
    check_cancelled()
    if half is None:
        return None
    return _bounded(half * half)


def int_pow(r: Rational, exp: int) -> Rational:
    """Raise r to an integer power, or return None if the result is too big."""
    if r is None:
        return None
    if exp == 0:
        return ONE
    if exp == 1:
        return r
    if r.denominator == 1 and r.numerator in (0, 1):
        return r
    if r == MINUS_ONE:
        return MINUS_ONE if exp & 1 else ONE
    if exp.bit_length() > MAX_EXPONENT_BITS:
        return None
    if exp < 0:
        return _raw_pow(inverse(r), -exp)
    return _raw_pow(r, exp)


def pow(base: Rational, exp: Rational) -> Rational:
    """Raise base to a rational power when the exponent is an integer."""
    if base is None or exp is None:
        return None
    if exp.denominator != 1:
        return None
    return int_pow(base, exp.numerator)


def as_int(r: Rational) -> Optional[int]:
    """Return r as an int if it is one."""
    if r is None or r.denominator != 1:
        return None
    return r.numerator


def whole_number_bits(r: Fraction) -> Optional[int]:
    """Approximate number of bits to the left of the binary point; None for zero."""
    if r.numerator == 0:
        return None
    return abs(r.numerator).bit_length() - r.denominator.bit_length()


def digits_required(r: Rational) -> Optional[int]:
    """Number of decimal digits to the right of the point needed to represent r exactly.

    Returns None if the decimal expansion does not terminate.
    """
    if r is None:
        return None
    den = r.denominator
    if den == 1:
        return 0
    if den.bit_length() > MAX_SIZE:
        return None
    powers_of_two = (den & -den).bit_length() - 1
    den >>= powers_of_two
    powers_of_five = 0
    while den % 5 == 0:
        powers_of_five += 1
        den //= 5
    if den != 1:
        return None
    return max(powers_of_two, powers_of_five)


def to_string_truncated(r: Fraction, n: int) -> str:
    """Return r truncated (not rounded) to n decimal places."""
    digits = int_to_decimal(abs(r.numerator) * 10**n // r.denominator)
    if len(digits) < n + 1:
        digits = "0" * (n + 1 - len(digits)) + digits
    sign = "-" if r < 0 else ""
    return f"{sign}{digits[: len(digits) - n]}.{digits[len(digits) - n :]}"


def to_nice_string(r: Fraction) -> str:
    if r.denominator == 1:
        return int_to_decimal(r.numerator)
    return f"{int_to_decimal(r.numerator)}/{int_to_decimal(r.denominator)}"


def cr_value(r: Fraction) -> CReal:
    return from_fraction(r.numerator, r.denominator)
