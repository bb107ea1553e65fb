"""Constructive real numbers.

A CReal stands for a real number x through ``approximate(p)``, which returns an
integer ``a`` with ``|a * 2**p - x| < 2**p``: an error of strictly less than one
unit in the last requested binary place. Values are immutable; combinators build
new values lazily without forcing any evaluation. Each value caches its best
approximation so far, which makes repeated requests at lower precision cheap.

Long-running loops poll the cancellation token installed for the current thread
by :func:`cancellation_scope` and raise :class:`AbortedError` when it is set.
"""

from __future__ import annotations

import contextvars
import math
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from .types import AbortedError, DomainError, PrecisionOverflowError

# Precisions must stay strictly inside (-PRECISION_LIMIT, PRECISION_LIMIT)
PRECISION_LIMIT = 1 << 28

# Returned by msd computations when the value could not be distinguished from zero
NO_MSD = -(1 << 62)

_DECIMAL_CHUNK_DIGITS = 1000


class CancellationToken:
    """A flag shared between a background computation and whoever may cancel it."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


_current_token: contextvars.ContextVar[CancellationToken | None] = (
    contextvars.ContextVar("exactcalc_cancellation_token", default=None)
)


@contextmanager
def cancellation_scope(token: CancellationToken) -> Iterator[CancellationToken]:
    """Install ``token`` as the cancellation token for computations in this context."""
    reset_token = _current_token.set(token)
    try:
        yield token
    finally:
        _current_token.reset(reset_token)


def check_cancelled() -> None:
    """Raise AbortedError if the active computation has been cancelled."""
    token = _current_token.get()
    if token is not None and token.cancelled:
        raise AbortedError()


def check_prec(n: int) -> None:
    if not -PRECISION_LIMIT < n < PRECISION_LIMIT:
        raise PrecisionOverflowError()


def bound_log2(n: int) -> int:
    """Return an upper bound on log2(|n| + 1)."""
    return math.ceil(math.log2(abs(n) + 1))


def shift(k: int, n: int) -> int:
    if n >= 0:
        return k << n
    return k >> -n


def scale(k: int, n: int) -> int:
    """Multiply k by 2**n, rounding to nearest when n is negative."""
    if n >= 0:
        return k << n
    return (shift(k, n + 1) + 1) >> 1


def tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


@lru_cache(maxsize=64)
def _pow10(n: int) -> int:
    return 10**n


def int_to_decimal(n: int) -> str:
    """Convert an arbitrarily large integer to its decimal representation.

    Python refuses str() on integers with more than a few thousand digits,
    so large values are split recursively around a power of ten.
    """
    if n < 0:
        return "-" + int_to_decimal(-n)
    if n < _pow10(_DECIMAL_CHUNK_DIGITS):
        return str(n)
    digits = int(n.bit_length() * 0.30102999566398) + 1
    half = digits // 2
    high, low = divmod(n, _pow10(half))
    return int_to_decimal(high) + int_to_decimal(low).rjust(half, "0")


class CReal:
    """A lazily evaluated real number."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.min_prec = 0
        self.max_appr = 0
        self.appr_valid = False

    def _approximate(self, p: int) -> int:
        raise NotImplementedError

    def approximate(self, p: int) -> int:
        """Return an approximation scaled by 2**-p, with error below one unit."""
        check_prec(p)
        with self._lock:
            if self.appr_valid and p >= self.min_prec:
                return scale(self.max_appr, self.min_prec - p)
            result = self._approximate(p)
            self.min_prec = p
            self.max_appr = result
            self.appr_valid = True
            return result

    # Position of the most significant bit

    def known_msd(self) -> int:
        return self.min_prec + abs(self.max_appr).bit_length() - 1

    def msd_at(self, n: int) -> int:
        """Return the msd if it is at least n, NO_MSD if the value may be below 2**n.

        The result may be off by one.
        """
        with self._lock:
            if not self.appr_valid or -1 <= self.max_appr <= 1:
                self.approximate(n - 1)
                if abs(self.max_appr) <= 1:
                    return NO_MSD
            return self.known_msd()

    def iter_msd(self, n: int) -> int:
        """Like msd_at, but raise the precision gradually to avoid huge requests."""
        prec = 0
        while prec > n + 30:
            msd = self.msd_at(prec)
            if msd != NO_MSD:
                return msd
            check_prec(prec)
            check_cancelled()
            prec = tdiv(prec * 3, 2) - 16
        return self.msd_at(n)

    def msd(self) -> int:
        """Return the msd. Diverges (ending in PrecisionOverflowError) for zero."""
        return self.iter_msd(NO_MSD)

    # Comparisons

    def compare_to_absolute(self, x: CReal, a: int) -> int:
        """Compare with x, returning 0 if the values are within 2**a of each other."""
        needed_prec = a - 1
        this_appr = self.approximate(needed_prec)
        x_appr = x.approximate(needed_prec)
        if this_appr > x_appr + 1:
            return 1
        if this_appr < x_appr - 1:
            return -1
        return 0

    def compare_to_relative(self, x: CReal, r: int, a: int) -> int:
        """Compare with x to relative tolerance 2**r, or absolute tolerance 2**a."""
        this_msd = self.iter_msd(a)
        x_msd = x.iter_msd(this_msd if this_msd > a else a)
        max_msd = max(this_msd, x_msd)
        if max_msd == NO_MSD:
            return 0
        check_prec(r)
        rel = max_msd + r
        abs_prec = rel if rel > a else a
        return self.compare_to_absolute(x, abs_prec)

    def compare_to(self, x: CReal) -> int:
        """Compare with x. Diverges if the values are equal."""
        a = -20
        while True:
            check_prec(a)
            result = self.compare_to_absolute(x, a)
            if result != 0:
                return result
            check_cancelled()
            a *= 2

    def signum(self, a: int | None = None) -> int:
        """Return the sign. Without ``a`` this diverges for zero."""
        if a is not None:
            with self._lock:
                if self.appr_valid and self.max_appr != 0:
                    return 1 if self.max_appr > 0 else -1
            appr = self.approximate(a - 1)
            return (appr > 0) - (appr < 0)
        a = -20
        while True:
            check_prec(a)
            result = self.signum(a)
            if result != 0:
                return result
            check_cancelled()
            a *= 2

    # Conversions

    def to_string(self, n: int = 10) -> str:
        """Return a decimal string with n digits after the point, rounded."""
        scaled = self.multiply(IntCReal(_pow10(n)))
        scaled_int = scaled.approximate(0)
        digits = int_to_decimal(abs(scaled_int))
        if n == 0:
            result = digits
        else:
            if len(digits) <= n:
                digits = "0" * (n + 1 - len(digits)) + digits
            result = digits[: len(digits) - n] + "." + digits[len(digits) - n :]
        if scaled_int < 0:
            result = "-" + result
        return result

    def __str__(self) -> str:
        return self.to_string(10)

    def __float__(self) -> float:
        msd = self.iter_msd(-1080)
        if msd == NO_MSD:
            return 0.0
        needed_prec = msd - 60
        return math.ldexp(float(self.approximate(needed_prec)), needed_prec)

    # Combinators

    def add(self, x: CReal) -> CReal:
        return AddCReal(self, x)

    def subtract(self, x: CReal) -> CReal:
        return AddCReal(self, x.negate())

    def multiply(self, x: CReal) -> CReal:
        return MultCReal(self, x)

    def divide(self, x: CReal) -> CReal:
        return MultCReal(self, x.inverse())

    def negate(self) -> CReal:
        return NegCReal(self)

    def inverse(self) -> CReal:
        return InvCReal(self)

    def shift_left(self, n: int) -> CReal:
        check_prec(n)
        return ShiftedCReal(self, n)

    def shift_right(self, n: int) -> CReal:
        check_prec(n)
        return ShiftedCReal(self, -n)

    def assume_int(self) -> CReal:
        return AssumedIntCReal(self)

    def select(self, x: CReal, y: CReal) -> CReal:
        """Return x if this value is negative, y otherwise."""
        return SelectCReal(self, x, y)

    def max(self, x: CReal) -> CReal:
        return self.subtract(x).select(x, self)

    def min(self, x: CReal) -> CReal:
        return self.subtract(x).select(self, x)

    def abs(self) -> CReal:
        return self.select(self.negate(), self)

    __add__ = add
    __sub__ = subtract
    __mul__ = multiply
    __truediv__ = divide
    __neg__ = negate
    __abs__ = abs

    # Elementary functions

    def exp(self) -> CReal:
        rough_appr = self.approximate(-10)
        if rough_appr > 2 or rough_appr < -2:
            square_root = self.shift_right(1).exp()
            return square_root.multiply(square_root)
        return PrescaledExpCReal(self)

    def cos(self) -> CReal:
        halfpi_multiples = self.divide(PI).approximate(-1)
        if abs(halfpi_multiples) >= 2:
            pi_multiples = scale(halfpi_multiples, -1)
            adjustment = PI.multiply(from_int(pi_multiples))
            if pi_multiples & 1:
                return self.subtract(adjustment).cos().negate()
            return self.subtract(adjustment).cos()
        if abs(self.approximate(-1)) >= 2:
            # cos(2x) = 2 cos(x)^2 - 1
            cos_half = self.shift_right(1).cos()
            return cos_half.multiply(cos_half).shift_left(1).subtract(ONE)
        return PrescaledCosCReal(self)

    def sin(self) -> CReal:
        return HALF_PI.subtract(self).cos()

    def asin(self) -> CReal:
        rough_appr = self.approximate(-10)
        if rough_appr > 750:  # 1/sqrt(2) + a bit
            return ONE.subtract(self.multiply(self)).sqrt().acos()
        if rough_appr < -750:
            return self.negate().asin().negate()
        return PrescaledAsinCReal(self)

    def acos(self) -> CReal:
        return HALF_PI.subtract(self.asin())

    def simple_ln(self) -> CReal:
        """Natural log for arguments reasonably close to one."""
        return PrescaledLnCReal(self.subtract(ONE))

    def ln(self) -> CReal:
        rough_appr = self.approximate(-4)  # in sixteenths
        if rough_appr < 0:
            raise DomainError("ln(negative)")
        if rough_appr <= 8:
            return self.inverse().ln().negate()
        if rough_appr >= 24:
            if rough_appr <= 64:
                quarter = self.sqrt().sqrt().ln()
                return quarter.shift_left(2)
            extra_bits = rough_appr.bit_length() - 3
            scaled_result = self.shift_right(extra_bits).ln()
            return scaled_result.add(from_int(extra_bits).multiply(LN2))
        return self.simple_ln()

    def sqrt(self) -> CReal:
        return SqrtCReal(self)


class SlowCReal(CReal):
    """A CReal that is expensive to evaluate: round precisions up to limit recomputation."""

    MAX_PREC = -64
    PREC_INCR = 32

    def approximate(self, p: int) -> int:
        check_prec(p)
        with self._lock:
            if self.appr_valid and p >= self.min_prec:
                return scale(self.max_appr, self.min_prec - p)
            if p >= self.MAX_PREC:
                eval_prec = self.MAX_PREC
            else:
                eval_prec = (p - self.PREC_INCR + 1) & ~(self.PREC_INCR - 1)
            result = self._approximate(eval_prec)
            self.min_prec = eval_prec
            self.max_appr = result
            self.appr_valid = True
            return scale(result, eval_prec - p)


class IntCReal(CReal):
    def __init__(self, value: int) -> None:
        super().__init__()
        self.value = value

    def _approximate(self, p: int) -> int:
        return scale(self.value, -p)


class AssumedIntCReal(CReal):
    """A value known to be an integer: approximations below 1 are exact."""

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 0:
            return self.op.approximate(p)
        return scale(self.op.approximate(0), -p)


class AddCReal(CReal):
    def __init__(self, op1: CReal, op2: CReal) -> None:
        super().__init__()
        self.op1 = op1
        self.op2 = op2

    def _approximate(self, p: int) -> int:
        return scale(self.op1.approximate(p - 2) + self.op2.approximate(p - 2), -2)


class ShiftedCReal(CReal):
    def __init__(self, op: CReal, count: int) -> None:
        super().__init__()
        self.op = op
        self.count = count

    def _approximate(self, p: int) -> int:
        return self.op.approximate(p - self.count)


class NegCReal(CReal):
    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        return -self.op.approximate(p)


class SelectCReal(CReal):
    def __init__(self, selector: CReal, op1: CReal, op2: CReal) -> None:
        super().__init__()
        self.selector = selector
        appr = selector.approximate(-20)
        self.selector_sign = (appr > 0) - (appr < 0)
        self.op1 = op1
        self.op2 = op2

    def _approximate(self, p: int) -> int:
        if self.selector_sign < 0:
            return self.op1.approximate(p)
        if self.selector_sign > 0:
            return self.op2.approximate(p)
        op1_appr = self.op1.approximate(p - 1)
        op2_appr = self.op2.approximate(p - 1)
        if abs(op1_appr - op2_appr) <= 1:
            return scale(op1_appr, -1)
        if self.selector.signum() < 0:
            self.selector_sign = -1
            return scale(op1_appr, -1)
        self.selector_sign = 1
        return scale(op2_appr, -1)


class MultCReal(CReal):
    def __init__(self, op1: CReal, op2: CReal) -> None:
        super().__init__()
        self.op1 = op1
        self.op2 = op2

    def _approximate(self, p: int) -> int:
        half_prec = (p >> 1) - 1
        msd_op1 = self.op1.msd_at(half_prec)
        if msd_op1 == NO_MSD:
            msd_op2 = self.op2.msd_at(half_prec)
            if msd_op2 == NO_MSD:
                # Product is too small to matter
                return 0
            self.op1, self.op2 = self.op2, self.op1
            msd_op1 = msd_op2
        prec2 = p - msd_op1 - 3
        appr2 = self.op2.approximate(prec2)
        if appr2 == 0:
            return 0
        msd_op2 = self.op2.known_msd()
        prec1 = p - msd_op2 - 3
        appr1 = self.op1.approximate(prec1)
        scale_digits = prec1 + prec2 - p
        return scale(appr1 * appr2, scale_digits)


class InvCReal(CReal):
    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        msd = self.op.msd()
        inv_msd = 1 - msd
        digits_needed = inv_msd - p + 3
        prec_needed = msd - digits_needed
        log_scale_factor = -p - prec_needed
        if log_scale_factor < 0:
            return 0
        dividend = 1 << log_scale_factor
        scaled_divisor = self.op.approximate(prec_needed)
        abs_scaled_divisor = abs(scaled_divisor)
        adj_dividend = dividend + (abs_scaled_divisor >> 1)
        result = adj_dividend // abs_scaled_divisor
        return -result if scaled_divisor < 0 else result


class PrescaledExpCReal(CReal):
    """exp(x) for |x| < 1/2 by its Taylor series."""

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 1:
            return 0
        iterations_needed = -p // 2 + 2
        calc_precision = p - bound_log2(2 * iterations_needed) - 4
        op_prec = p - 3
        op_appr = self.op.approximate(op_prec)
        scaled_1 = 1 << -calc_precision
        current_term = scaled_1
        current_sum = scaled_1
        n = 0
        max_trunc_error = 1 << (p - 4 - calc_precision)
        while abs(current_term) >= max_trunc_error:
            check_cancelled()
            n += 1
            current_term = scale(current_term * op_appr, op_prec)
            current_term = tdiv(current_term, n)
            current_sum += current_term
        return scale(current_sum, calc_precision - p)


class PrescaledCosCReal(SlowCReal):
    """cos(x) for |x| < 1 by its Taylor series."""

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 1:
            return 0
        iterations_needed = -p // 2 + 4
        calc_precision = p - bound_log2(2 * iterations_needed) - 4
        op_prec = p - 2
        op_appr = self.op.approximate(op_prec)
        max_trunc_error = 1 << (p - 4 - calc_precision)
        n = 0
        current_term = 1 << -calc_precision
        current_sum = current_term
        while abs(current_term) >= max_trunc_error:
            check_cancelled()
            n += 2
            current_term = scale(current_term * op_appr, op_prec)
            current_term = scale(current_term * op_appr, op_prec)
            current_term = tdiv(current_term, -n * (n - 1))
            current_sum += current_term
        return scale(current_sum, calc_precision - p)


class IntegralAtanCReal(SlowCReal):
    """atan(1/n) for an integer n > 1."""

    def __init__(self, op: int) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 1:
            return 0
        iterations_needed = -p // 2 + 2
        calc_precision = p - bound_log2(2 * iterations_needed) - 2
        scaled_1 = 1 << -calc_precision
        op_squared = self.op * self.op
        op_inverse = scaled_1 // self.op
        current_power = op_inverse
        current_term = op_inverse
        current_sum = op_inverse
        current_sign = 1
        n = 1
        max_trunc_error = 1 << (p - 2 - calc_precision)
        while abs(current_term) >= max_trunc_error:
            check_cancelled()
            n += 2
            current_power //= op_squared
            current_sign = -current_sign
            current_term = tdiv(current_power, current_sign * n)
            current_sum += current_term
        return scale(current_sum, calc_precision - p)


class PrescaledLnCReal(SlowCReal):
    """ln(1 + x) for |x| < 1/2 by its Taylor series."""

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 0:
            return 0
        iterations_needed = -p
        calc_precision = p - bound_log2(2 * iterations_needed) - 4
        op_prec = p - 3
        op_appr = self.op.approximate(op_prec)
        x_nth = scale(op_appr, op_prec - calc_precision)
        current_term = x_nth
        current_sum = current_term
        n = 1
        current_sign = 1
        max_trunc_error = 1 << (p - 4 - calc_precision)
        while abs(current_term) >= max_trunc_error:
            check_cancelled()
            n += 1
            current_sign = -current_sign
            x_nth = scale(x_nth * op_appr, op_prec)
            current_term = tdiv(x_nth, n * current_sign)
            current_sum += current_term
        return scale(current_sum, calc_precision - p)


class PrescaledAsinCReal(SlowCReal):
    """asin(x) for |x| <= 1/sqrt(2) + a bit, by its Taylor series."""

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        if p >= 2:
            return 0
        iterations_needed = tdiv(-3 * p, 2) + 4
        calc_precision = p - bound_log2(2 * iterations_needed) - 4
        op_prec = p - 3
        op_appr = self.op.approximate(op_prec)
        max_last_term = 1 << (p - 4 - calc_precision)
        exp = 1
        current_term = op_appr << (op_prec - calc_precision)
        current_sum = current_term
        current_factor = current_term
        while abs(current_term) >= max_last_term:
            check_cancelled()
            exp += 2
            current_factor *= exp - 2
            current_factor = scale(current_factor * op_appr, op_prec + 2)
            current_factor *= op_appr
            current_factor = tdiv(current_factor, exp - 1)
            current_factor = scale(current_factor, op_prec - 2)
            current_term = tdiv(current_factor, exp)
            current_sum += current_term
        return scale(current_sum, calc_precision - p)


class SqrtCReal(CReal):
    _GUARD_BITS = 2

    def __init__(self, op: CReal) -> None:
        super().__init__()
        self.op = op

    def _approximate(self, p: int) -> int:
        max_op_prec_needed = 2 * p - 1
        msd = self.op.iter_msd(max_op_prec_needed)
        if msd <= max_op_prec_needed:
            return 0
        op_appr = self.op.approximate(2 * (p - self._GUARD_BITS))
        if op_appr < 0:
            raise DomainError("sqrt(negative)")
        return scale(math.isqrt(op_appr), -self._GUARD_BITS)


def from_int(n: int) -> CReal:
    return IntCReal(n)


def from_fraction(numerator: int, denominator: int) -> CReal:
    if denominator == 1:
        return IntCReal(numerator)
    return IntCReal(numerator).divide(IntCReal(denominator))


def atan_reciprocal(n: int) -> CReal:
    return IntegralAtanCReal(n)


ZERO = from_int(0)
ONE = from_int(1)

# Machin's formula: pi/4 = 4 atan(1/5) - atan(1/239)
_FOUR = from_int(4)
PI = _FOUR.multiply(
    _FOUR.multiply(atan_reciprocal(5)).subtract(atan_reciprocal(239))
)
HALF_PI = PI.shift_right(1)

# ln(2) = 7 ln(10/9) - 2 ln(25/24) + 3 ln(81/80)
LN2 = (
    from_int(7)
    .multiply(from_fraction(10, 9).simple_ln())
    .subtract(from_int(2).multiply(from_fraction(25, 24).simple_ln()))
    .add(from_int(3).multiply(from_fraction(81, 80).simple_ln()))
)
