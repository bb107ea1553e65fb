"""Real values as a product of an exact rational and a constructive real.

A :class:`RealValue` is ``rat * cr`` where ``rat`` is a bounded
:class:`~fractions.Fraction` and ``cr`` is a :class:`~exactcalc_pkg.creal.CReal`.
When ``cr`` is one of a handful of well-known "named" reals (1, pi, e, small
square roots and logarithms) many results can be recognised exactly: the
calculator then knows, for example, that ``sin(pi/6)`` is exactly ``1/2`` and
that ``sqrt(8)`` is ``2*sqrt(2)``. Everything else falls back to constructive
real arithmetic.

Equality of real numbers is undecidable, so RealValue offers tolerant and
"definite" comparisons instead of ``__eq__``.
"""

from __future__ import annotations

import math
import sys
from fractions import Fraction
from typing import Optional, Union

from . import bounded_rational as br
from . import creal
from .creal import CReal, check_cancelled
from .types import DivideByZeroError, DomainError
from .unary_function import atan_function

# Default precision for tolerant comparisons, in bits
DEFAULT_COMPARE_TOLERANCE = -1000

# Extra bits used when truncating values that cannot be truncated exactly
EXTRA_PREC = 10

# Integer exponents above this are evaluated through exp(ln(x) * n)
RECURSIVE_POW_LIMIT = 1000
HARD_RECURSIVE_POW_LIMIT = 1 << 1000

# Returned by leading_binary_zeroes when no useful bound is known
UNKNOWN_LEADING_ZEROES = sys.maxsize

CR_ONE = creal.ONE
CR_PI = creal.PI
CR_E = creal.ONE.exp()
CR_SQRT2 = creal.from_int(2).sqrt()
CR_SQRT3 = creal.from_int(3).sqrt()

# Indexed by the radicand / logarithm argument
_SQRTS: list[Optional[CReal]] = [
    None,
    CR_ONE,
    CR_SQRT2,
    CR_SQRT3,
    None,
    creal.from_int(5).sqrt(),
    creal.from_int(6).sqrt(),
    creal.from_int(7).sqrt(),
    None,
    None,
    creal.from_int(10).sqrt(),
]
_LOGS: list[Optional[CReal]] = [
    None,
    None,
    creal.from_int(2).ln(),
    creal.from_int(3).ln(),
    None,
    creal.from_int(5).ln(),
    creal.from_int(6).ln(),
    creal.from_int(7).ln(),
    None,
    None,
    creal.from_int(10).ln(),
]


def _get_square(cr: CReal) -> Optional[int]:
    for i, r in enumerate(_SQRTS):
        if r is cr:
            return i
    return None


def _get_exp(cr: CReal) -> Optional[int]:
    for i, r in enumerate(_LOGS):
        if r is cr:
            return i
    return None


def _cr_name(cr: CReal) -> Optional[str]:
    if cr is CR_ONE:
        return ""
    if cr is CR_PI:
        return "π"
    if cr is CR_E:
        return "e"
    i = _get_square(cr)
    if i is not None:
        return f"√{i}"
    i = _get_exp(cr)
    if i is not None:
        return f"ln({i})"
    return None


def _is_named(cr: CReal) -> bool:
    return cr is CR_PI or cr is CR_E or _get_square(cr) is not None or _get_exp(cr) is not None


def _definitely_algebraic(cr: CReal) -> bool:
    return _get_square(cr) is not None


def _definitely_independent(r1: CReal, r2: CReal) -> bool:
    """Are r1 and r2 known to be linearly independent over the rationals?"""
    if r1 is r2:
        return False
    if r1 is CR_E or r1 is CR_PI:
        return _definitely_algebraic(r2)
    if r2 is CR_E or r2 is CR_PI:
        return _definitely_algebraic(r1)
    return _is_named(r1) and _is_named(r2)


def _get_int_log(n: int, base: int) -> int:
    """Return log_base(n) if it is an integer, or 0 otherwise. n must be positive."""
    approx = math.log(n) / math.log(base)
    if abs(approx - round(approx)) > 1.0e-6:
        return 0
    result = 0
    base16 = base**16
    while n % base == 0:
        check_cancelled()
        n //= base
        result += 1
        while n % base16 == 0:
            n //= base16
            result += 16
    return result if n == 1 else 0


def _recursive_pow(base: CReal, exp: int) -> CReal:
    if exp == 1:
        return base
    if exp & 1:
        return base.multiply(_recursive_pow(base, exp - 1))
    half = _recursive_pow(base, exp >> 1)
    check_cancelled()
    return half.multiply(half)


class RealValue:
    """An exact-where-possible real number used by expression evaluation."""

    def __init__(self, rat: Union[Fraction, int], cr: CReal = CR_ONE) -> None:
        self.rat = Fraction(rat)
        self.cr = cr

    @classmethod
    def from_creal(cls, cr: CReal) -> RealValue:
        return cls(br.ONE, cr)

    @classmethod
    def from_decimal(cls, text: str) -> RealValue:
        """Build an exact value from decimal text such as ``"1.25"`` or ``"3e-2"``."""
        return cls(Fraction(text))

    def __repr__(self) -> str:
        return f"RealValue({self.to_nice_string()})"

    # Classification

    def definitely_zero(self) -> bool:
        return self.rat == 0

    def definitely_rational(self) -> bool:
        return self.cr is CR_ONE or self.rat == 0

    def definitely_irrational(self) -> bool:
        return not self.definitely_rational() and _is_named(self.cr)

    def definitely_algebraic(self) -> bool:
        return _definitely_algebraic(self.cr) or self.rat == 0

    def exactly_displayable(self) -> bool:
        return _cr_name(self.cr) is not None

    def exactly_truncatable(self) -> bool:
        return self.cr is CR_ONE or self.rat == 0 or self.definitely_irrational()

    def bounded_rational_value(self) -> Optional[Fraction]:
        if self.definitely_rational():
            return self.rat
        return None

    def int_value(self) -> Optional[int]:
        return br.as_int(self.bounded_rational_value())

    # Conversions

    def cr_value(self) -> CReal:
        if self.rat == 1:
            return self.cr
        return br.cr_value(self.rat).multiply(self.cr)

    def __float__(self) -> float:
        if self.cr is CR_ONE:
            return float(self.rat)
        return float(self.cr_value())

    def to_nice_string(self) -> str:
        """Exact representation such as ``3/4``, ``2π`` or ``(1/2)√3`` when available."""
        if self.definitely_rational():
            return br.to_nice_string(self.rat)
        name = _cr_name(self.cr)
        if name is not None:
            as_int = br.as_int(self.rat)
            if as_int is not None:
                return name if as_int == 1 else f"{br.to_nice_string(self.rat)}{name}"
            return f"({br.to_nice_string(self.rat)}){name}"
        return self.cr_value().to_string(10)

    def to_string_truncated(self, n: int) -> str:
        """Return the value truncated to n decimal places.

        Exact for rationals and named irrationals; otherwise the digits can be
        off by one in the last place, which callers must tolerate.
        """
        if self.definitely_rational():
            return br.to_string_truncated(self.rat, n)
        scaled = creal.from_int(10**n).multiply(self.cr_value())
        negative = False
        if self.exactly_truncatable():
            int_scaled = scaled.approximate(0)
            if int_scaled < 0:
                negative = True
                int_scaled = -int_scaled
            if creal.from_int(int_scaled).compare_to(scaled.abs()) > 0:
                int_scaled -= 1
            if creal.from_int(int_scaled).compare_to(scaled.abs()) >= 0:
                raise AssertionError("inexact truncation")
        else:
            int_scaled = scaled.approximate(-EXTRA_PREC)
            if int_scaled < 0:
                negative = True
                int_scaled = -int_scaled
            int_scaled >>= EXTRA_PREC
        digits = creal.int_to_decimal(int_scaled)
        if len(digits) < n + 1:
            digits = "0" * (n + 1 - len(digits)) + digits
        sign = "-" if negative else ""
        return f"{sign}{digits[: len(digits) - n]}.{digits[len(digits) - n :]}"

    # Comparisons

    def is_comparable(self, u: RealValue) -> bool:
        """Can compare_to(u) be computed without risk of divergence?"""
        if self.cr is u.cr and (
            _is_named(self.cr) or self.cr.signum(DEFAULT_COMPARE_TOLERANCE) != 0
        ):
            return True
        if self.rat == 0 and u.rat == 0:
            return True
        if _definitely_independent(self.cr, u.cr):
            return True
        return self.cr_value().compare_to_absolute(u.cr_value(), DEFAULT_COMPARE_TOLERANCE) != 0

    def compare_to(self, u: RealValue, a: Optional[int] = None) -> int:
        """Compare with u.

        Without ``a`` this may diverge for equal values. With ``a`` values within
        2**a of each other may compare equal unless an exact answer is cheap.
        """
        if a is not None:
            if self.is_comparable(u):
                return self.compare_to(u)
            return self.cr_value().compare_to_absolute(u.cr_value(), a)
        if self.definitely_zero() and u.definitely_zero():
            return 0
        if self.cr is u.cr:
            signum = self.cr.signum()
            return signum * ((self.rat > u.rat) - (self.rat < u.rat))
        return self.cr_value().compare_to(u.cr_value())

    def signum(self, a: Optional[int] = None) -> int:
        return self.compare_to(ZERO, a)

    def approx_equals(self, u: RealValue, a: int) -> bool:
        if self.is_comparable(u):
            if _definitely_independent(self.cr, u.cr) and (self.rat != 0 or u.rat != 0):
                return False
            return self.compare_to(u) == 0
        return self.cr_value().compare_to_absolute(u.cr_value(), a) == 0

    def definitely_equals(self, u: RealValue) -> bool:
        return self.is_comparable(u) and self.compare_to(u) == 0

    # Arithmetic

    def add(self, u: RealValue) -> RealValue:
        if self.cr is u.cr:
            n_rat = br.add(self.rat, u.rat)
            if n_rat is not None:
                return RealValue(n_rat, self.cr)
        if self.definitely_zero():
            return u
        if u.definitely_zero():
            return self
        return RealValue.from_creal(self.cr_value().add(u.cr_value()))

    def negate(self) -> RealValue:
        return RealValue(-self.rat, self.cr)

    def subtract(self, u: RealValue) -> RealValue:
        return self.add(u.negate())

    def multiply(self, u: RealValue) -> RealValue:
        if self.cr is CR_ONE:
            n_rat = br.multiply(self.rat, u.rat)
            if n_rat is not None:
                return RealValue(n_rat, u.cr)
        if u.cr is CR_ONE:
            n_rat = br.multiply(self.rat, u.rat)
            if n_rat is not None:
                return RealValue(n_rat, self.cr)
        if self.definitely_zero() or u.definitely_zero():
            return ZERO
        if self.cr is u.cr:
            square = _get_square(self.cr)
            if square is not None:
                n_rat = br.multiply(br.multiply(Fraction(square), self.rat), u.rat)
                if n_rat is not None:
                    return RealValue(n_rat)
        n_rat = br.multiply(self.rat, u.rat)
        if n_rat is not None:
            return RealValue(n_rat, self.cr.multiply(u.cr))
        return RealValue.from_creal(self.cr_value().multiply(u.cr_value()))

    def inverse(self) -> RealValue:
        if self.definitely_zero():
            raise DivideByZeroError()
        square = _get_square(self.cr)
        if square is not None:
            # 1/(r sqrt(n)) == (1/(r n)) sqrt(n)
            n_rat = br.inverse(br.multiply(self.rat, Fraction(square)))
            if n_rat is not None:
                return RealValue(n_rat, self.cr)
        return RealValue(br.inverse(self.rat), self.cr.inverse())

    def divide(self, u: RealValue) -> RealValue:
        if self.cr is u.cr:
            if u.definitely_zero():
                raise DivideByZeroError()
            n_rat = br.divide(self.rat, u.rat)
            if n_rat is not None:
                return RealValue(n_rat)
        return self.multiply(u.inverse())

    def sqrt(self) -> RealValue:
        if self.definitely_zero():
            return ZERO
        if self.cr is CR_ONE:
            for divisor in range(1, len(_SQRTS)):
                if _SQRTS[divisor] is None:
                    continue
                rat_sqrt = br.sqrt(br.divide(self.rat, Fraction(divisor)))
                if rat_sqrt is not None:
                    return RealValue(rat_sqrt, _SQRTS[divisor])
        return RealValue.from_creal(self.cr_value().sqrt())

    # Trigonometry

    def _pi_twelfths(self) -> Optional[int]:
        """Return n if this value is n*pi/12 (mod 2*pi), otherwise None."""
        if self.definitely_zero():
            return 0
        if self.cr is CR_PI:
            quotient = br.as_int(br.multiply(self.rat, br.TWELVE))
            if quotient is None:
                return None
            return quotient % 24
        return None

    def sin(self) -> RealValue:
        pi_twelfths = self._pi_twelfths()
        if pi_twelfths is not None:
            result = _sin_pi_twelfths(pi_twelfths)
            if result is not None:
                return result
        return RealValue.from_creal(self.cr_value().sin())

    def cos(self) -> RealValue:
        pi_twelfths = self._pi_twelfths()
        if pi_twelfths is not None:
            result = _cos_pi_twelfths(pi_twelfths)
            if result is not None:
                return result
        return RealValue.from_creal(self.cr_value().cos())

    def tan(self) -> RealValue:
        pi_twelfths = self._pi_twelfths()
        if pi_twelfths is not None:
            if pi_twelfths in (6, 18):
                raise DomainError("Tangent undefined")
            top = _sin_pi_twelfths(pi_twelfths)
            bottom = _cos_pi_twelfths(pi_twelfths)
            if top is not None and bottom is not None:
                return top.divide(bottom)
        return self.sin().divide(self.cos())

    def _check_asin_domain(self) -> None:
        if self.is_comparable(ONE) and (
            self.compare_to(ONE) > 0 or self.compare_to(MINUS_ONE) < 0
        ):
            raise DomainError("inverse trig argument out of range")

    def _asin_non_halves(self) -> RealValue:
        if self.compare_to(ZERO, -10) < 0:
            return self.negate()._asin_non_halves().negate()
        if self.definitely_equals(HALF_SQRT2):
            return RealValue(br.QUARTER, CR_PI)
        if self.definitely_equals(HALF_SQRT3):
            return RealValue(br.THIRD, CR_PI)
        return RealValue.from_creal(self.cr_value().asin())

    def asin(self) -> RealValue:
        self._check_asin_domain()
        halves = self.multiply(TWO).int_value()
        if halves is not None:
            return _asin_halves(halves)
        return self._asin_non_halves()

    def acos(self) -> RealValue:
        return PI_OVER_2.subtract(self.asin())

    def atan(self) -> RealValue:
        if self.compare_to(ZERO, -10) < 0:
            return self.negate().atan().negate()
        as_int = self.int_value()
        if as_int is not None and as_int <= 1:
            return ZERO if as_int == 0 else PI_OVER_4
        if self.definitely_equals(THIRD_SQRT3):
            return PI_OVER_6
        if self.definitely_equals(SQRT3):
            return PI_OVER_3
        return RealValue.from_creal(atan_function.execute(self.cr_value()))

    # Powers, logarithms and factorial

    def _exp_ln_pow(self, exp: int) -> RealValue:
        sign = self.signum(DEFAULT_COMPARE_TOLERANCE)
        if sign > 0:
            return RealValue.from_creal(
                self.cr_value().ln().multiply(creal.from_int(exp)).exp()
            )
        if sign < 0:
            result = self.cr_value().negate().ln().multiply(creal.from_int(exp)).exp()
            if exp & 1:
                result = result.negate()
            return RealValue.from_creal(result)
        # Sign unknown: a recursive product at least cannot take the log of zero
        if exp < 0:
            return RealValue.from_creal(_recursive_pow(self.cr_value(), -exp).inverse())
        return RealValue.from_creal(_recursive_pow(self.cr_value(), exp))

    def _int_pow(self, exp: int) -> RealValue:
        if exp == 1:
            return self
        if exp == 0:
            return ONE
        abs_exp = abs(exp)
        if self.cr is CR_ONE and abs_exp <= HARD_RECURSIVE_POW_LIMIT:
            rat_pow = br.int_pow(self.rat, exp)
            if rat_pow is not None:
                return RealValue(rat_pow)
        if abs_exp > RECURSIVE_POW_LIMIT:
            return self._exp_ln_pow(exp)
        square = _get_square(self.cr)
        if square is not None:
            n_rat = br.multiply(
                br.int_pow(self.rat, exp), br.int_pow(Fraction(square), exp >> 1)
            )
            if n_rat is not None:
                if exp & 1:
                    return RealValue(n_rat, self.cr)
                return RealValue(n_rat)
        return self._exp_ln_pow(exp)

    def pow(self, expon: RealValue) -> RealValue:
        if self.cr is CR_E:
            if self.rat == 1:
                return expon.exp()
            rat_part = RealValue(self.rat).pow(expon)
            return expon.exp().multiply(rat_part)
        exp_rat = expon.bounded_rational_value()
        if exp_rat is not None:
            exp_int = br.as_int(exp_rat)
            if exp_int is not None:
                return self._int_pow(exp_int)
            exp_int = br.as_int(br.multiply(Fraction(2), exp_rat))
            if exp_int is not None:
                return self._int_pow(exp_int).sqrt()
        if self.definitely_zero():
            return ZERO
        if self.signum(DEFAULT_COMPARE_TOLERANCE) < 0:
            raise DomainError("Negative base for pow() with non-integer exponent")
        return RealValue.from_creal(self.cr_value().ln().multiply(expon.cr_value()).exp())

    def ln(self) -> RealValue:
        if self.cr is CR_E:
            return RealValue(self.rat).ln().add(ONE)
        if self.is_comparable(ZERO):
            if self.signum() <= 0:
                raise DomainError("log(non-positive)")
            compare1 = self.compare_to(ONE, DEFAULT_COMPARE_TOLERANCE)
            if compare1 == 0:
                if self.definitely_equals(ONE):
                    return ZERO
            elif compare1 < 0:
                return self.inverse().ln().negate()
            as_int = br.as_int(self.rat)
            if as_int is not None:
                if self.cr is CR_ONE:
                    for i, log_cr in enumerate(_LOGS):
                        if log_cr is None:
                            continue
                        int_log = _get_int_log(as_int, i)
                        if int_log != 0:
                            return RealValue(int_log, log_cr)
                else:
                    square = _get_square(self.cr)
                    if square is not None and _LOGS[square] is not None:
                        # ln(k sqrt(n)) with k == n**m is (m + 1/2) ln(n)
                        int_log = _get_int_log(as_int, square)
                        if int_log != 0:
                            n_rat = br.add(Fraction(int_log), br.HALF)
                            if n_rat is not None:
                                return RealValue(n_rat, _LOGS[square])
        return RealValue.from_creal(self.cr_value().ln())

    def log10(self) -> RealValue:
        return self.ln().divide(TEN.ln())

    def exp(self) -> RealValue:
        if self.definitely_equals(ZERO):
            return ONE
        if self.definitely_equals(ONE):
            return E
        cr_exp = _get_exp(self.cr)
        if cr_exp is not None:
            need_sqrt = False
            rat_exponent = self.rat
            if br.as_int(rat_exponent) is None:
                need_sqrt = True
                rat_exponent = br.multiply(rat_exponent, Fraction(2))
            n_rat = br.pow(Fraction(cr_exp), rat_exponent)
            if n_rat is not None:
                result = RealValue(n_rat)
                return result.sqrt() if need_sqrt else result
        return RealValue.from_creal(self.cr_value().exp())

    def fact(self) -> RealValue:
        as_int = self.int_value()
        if as_int is None:
            # Correct if the value is an integer
            as_int = self.cr_value().approximate(0)
            if not self.approx_equals(RealValue(as_int), DEFAULT_COMPARE_TOLERANCE):
                raise DomainError("Non-integral factorial argument")
        if as_int < 0:
            raise DomainError("Negative factorial argument")
        if as_int.bit_length() > 20:
            raise DomainError("Factorial argument too big")
        return RealValue(math.factorial(as_int))

    # Display support

    def digits_required(self) -> Optional[int]:
        """Decimal digits right of the point needed for an exact result, or None."""
        if self.definitely_rational():
            return br.digits_required(self.rat)
        return None

    def leading_binary_zeroes(self) -> int:
        """An upper bound on the number of binary zeroes right of the point.

        Only meaningful for values of magnitude below one; returns
        UNKNOWN_LEADING_ZEROES when no bound is available.
        """
        if _is_named(self.cr):
            whole_bits = br.whole_number_bits(self.rat)
            if whole_bits is None:
                return UNKNOWN_LEADING_ZEROES
            if whole_bits >= 3:
                return 0
            return -whole_bits + 3
        return UNKNOWN_LEADING_ZEROES

    def approx_whole_number_bits_greater_than(self, bound: int) -> bool:
        """Is the whole-number part (roughly) longer than ``bound`` bits?"""
        if _is_named(self.cr):
            whole_bits = br.whole_number_bits(self.rat)
            return whole_bits is not None and whole_bits > bound
        return abs(self.cr_value().approximate(bound - 2)).bit_length() > 2


def _sin_pi_twelfths(n: int) -> Optional[RealValue]:
    if n >= 12:
        neg_result = _sin_pi_twelfths(n - 12)
        return None if neg_result is None else neg_result.negate()
    return {
        0: ZERO,
        2: HALF,
        3: HALF_SQRT2,
        4: HALF_SQRT3,
        6: ONE,
        8: HALF_SQRT3,
        9: HALF_SQRT2,
        10: HALF,
    }.get(n)


def _cos_pi_twelfths(n: int) -> Optional[RealValue]:
    sin_arg = n + 6
    if sin_arg >= 24:
        sin_arg -= 24
    return _sin_pi_twelfths(sin_arg)


def _asin_halves(n: int) -> RealValue:
    if n < 0:
        return _asin_halves(-n).negate()
    if n == 0:
        return ZERO
    if n == 1:
        return RealValue(br.SIXTH, CR_PI)
    if n == 2:
        return RealValue(br.HALF, CR_PI)
    raise AssertionError("asin_halves: bad argument")


ZERO = RealValue(0)
ONE = RealValue(1)
MINUS_ONE = RealValue(-1)
TWO = RealValue(2)
HALF = RealValue(br.HALF)
TEN = RealValue(10)
PI = RealValue.from_creal(CR_PI)
E = RealValue.from_creal(CR_E)
RADIANS_PER_DEGREE = RealValue(Fraction(1, 180), CR_PI)
HALF_SQRT2 = RealValue(br.HALF, CR_SQRT2)
SQRT3 = RealValue.from_creal(CR_SQRT3)
HALF_SQRT3 = RealValue(br.HALF, CR_SQRT3)
THIRD_SQRT3 = RealValue(br.THIRD, CR_SQRT3)
PI_OVER_2 = RealValue(br.HALF, CR_PI)
PI_OVER_3 = RealValue(br.THIRD, CR_PI)
PI_OVER_4 = RealValue(br.QUARTER, CR_PI)
PI_OVER_6 = RealValue(br.SIXTH, CR_PI)
