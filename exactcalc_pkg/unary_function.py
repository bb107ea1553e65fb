"""Functions from constructive reals to constructive reals.

Besides the elementary built-ins, this module can build the inverse of a
monotone function on an interval and the derivative of a function that is
monotone and twice differentiable on an interval. Both produce CReal values
that converge lazily and honour cancellation of the enclosing computation.
"""

from __future__ import annotations

from .creal import ONE, CReal, check_cancelled, from_int, scale, tdiv
from .types import DomainError


class UnaryFunction:
    """A function from CReal to CReal."""

    def execute(self, x: CReal) -> CReal:
        raise NotImplementedError

    def __call__(self, x: CReal) -> CReal:
        return self.execute(x)

    def compose(self, inner: UnaryFunction) -> UnaryFunction:
        """Return the function x -> self(inner(x))."""
        return ComposeFunction(self, inner)

    def inverse_monotone(self, low: CReal, high: CReal) -> UnaryFunction:
        """Return the inverse of this function, which must be monotone on [low, high].

        The resulting function is defined only between f(low) and f(high).
        """
        return InverseMonotoneFunction(self, low, high)

    def monotone_derivative(self, low: CReal, high: CReal) -> UnaryFunction:
        """Return the derivative of this function on the open interval (low, high).

        The function must be monotone with a continuous second derivative there.
        """
        return MonotoneDerivativeFunction(self, low, high)


class _BuiltinFunction(UnaryFunction):
    def __init__(self, name: str, fn) -> None:
        self.name = name
        self._fn = fn

    def execute(self, x: CReal) -> CReal:
        return self._fn(x)

    def __repr__(self) -> str:
        return f"UnaryFunction({self.name})"


def _atan(x: CReal) -> CReal:
    x2 = x.multiply(x)
    abs_sin_atan = x2.divide(ONE.add(x2)).sqrt()
    sin_atan = x.select(abs_sin_atan.negate(), abs_sin_atan)
    return sin_atan.asin()


identity_function = _BuiltinFunction("identity", lambda x: x)
negate_function = _BuiltinFunction("negate", lambda x: x.negate())
inverse_function = _BuiltinFunction("inverse", lambda x: x.inverse())
abs_function = _BuiltinFunction("abs", lambda x: x.abs())
exp_function = _BuiltinFunction("exp", lambda x: x.exp())
ln_function = _BuiltinFunction("ln", lambda x: x.ln())
sqrt_function = _BuiltinFunction("sqrt", lambda x: x.sqrt())
sin_function = _BuiltinFunction("sin", lambda x: x.sin())
cos_function = _BuiltinFunction("cos", lambda x: x.cos())
tan_function = _BuiltinFunction("tan", lambda x: x.sin().divide(x.cos()))
asin_function = _BuiltinFunction("asin", lambda x: x.asin())
acos_function = _BuiltinFunction("acos", lambda x: x.acos())
atan_function = _BuiltinFunction("atan", _atan)


class ComposeFunction(UnaryFunction):
    def __init__(self, outer: UnaryFunction, inner: UnaryFunction) -> None:
        self.outer = outer
        self.inner = inner

    def execute(self, x: CReal) -> CReal:
        return self.outer.execute(self.inner.execute(x))


def _sloppy_compare(x: int, y: int) -> int:
    difference = x - y
    if difference > 1:
        return 1
    if difference < -1:
        return -1
    return 0


class InverseMonotoneFunction(UnaryFunction):
    """Inverse of a function that is monotone on [low, high].

    Decreasing functions are handled by inverting their negation.
    """

    def __init__(self, func: UnaryFunction, low: CReal, high: CReal) -> None:
        self.low = low
        self.high = high
        f_low = func.execute(low)
        f_high = func.execute(high)
        if f_low.compare_to(f_high) > 0:
            self.f = negate_function.compose(func)
            self.f_negated = True
            self.f_low = f_low.negate()
            self.f_high = f_high.negate()
        else:
            self.f = func
            self.f_negated = False
            self.f_low = f_low
            self.f_high = f_high
        self.max_msd = low.abs().max(high.abs()).msd()
        self.max_arg_prec = high.subtract(low).msd() - 4
        self.deriv_msd = self.f_high.subtract(self.f_low).divide(high.subtract(low)).msd()

    def execute(self, x: CReal) -> CReal:
        return InverseIncreasingCReal(self, x)


class InverseIncreasingCReal(CReal):
    """The point y in [low, high] with f(y) == arg, found by bracketing."""

    EXTRA_ARG_PREC = 4

    def __init__(self, owner: InverseMonotoneFunction, x: CReal) -> None:
        super().__init__()
        self.owner = owner
        self.arg = x.negate() if owner.f_negated else x

    def _eval_at(self, n: int, working_arg_prec: int, working_eval_prec: int) -> int:
        point = from_int(n).shift_left(working_arg_prec)
        return self.owner.f.execute(point).approximate(working_eval_prec)

    def _approximate(self, p: int) -> int:
        owner = self.owner
        small_step_deficit = 0  # ineffective interpolation steps so far
        digits_needed = owner.max_msd - p
        if digits_needed < 0:
            return 0
        working_arg_prec = min(p - self.EXTRA_ARG_PREC, owner.max_arg_prec)
        working_eval_prec = working_arg_prec + owner.deriv_msd - 20
        low_appr = owner.low.approximate(working_arg_prec) + 1
        high_appr = owner.high.approximate(working_arg_prec) - 1
        arg_appr = self.arg.approximate(working_eval_prec)
        have_good_appr = self.appr_valid and self.min_prec < owner.max_msd

        if digits_needed < 30 and not have_good_appr:
            h = high_appr
            f_h = owner.f_high.approximate(working_eval_prec)
            l = low_appr
            f_l = owner.f_low.approximate(working_eval_prec)
            if f_h < arg_appr - 1 or f_l > arg_appr + 1:
                raise DomainError("inverse(out-of-bounds)")
            at_left = True
            at_right = True
            small_step_deficit = 2  # start with binary search steps
        else:
            rough_prec = p + digits_needed // 2
            if have_good_appr and (
                digits_needed < 30 or self.min_prec < p + 3 * digits_needed // 4
            ):
                rough_prec = self.min_prec
            rough_appr = self.approximate(rough_prec)
            h = (rough_appr + 1) << (rough_prec - working_arg_prec)
            l = (rough_appr - 1) << (rough_prec - working_arg_prec)
            if h > high_appr:
                h = high_appr
                f_h = owner.f_high.approximate(working_eval_prec)
                at_right = True
            else:
                f_h = self._eval_at(h, working_arg_prec, working_eval_prec)
                at_right = False
            if l < low_appr:
                l = low_appr
                f_l = owner.f_low.approximate(working_eval_prec)
                at_left = True
            else:
                f_l = self._eval_at(l, working_arg_prec, working_eval_prec)
                at_left = False

        difference = h - l
        while True:
            check_cancelled()
            if difference < 6:
                return scale(h, -self.EXTRA_ARG_PREC)
            f_difference = f_h - f_l
            binary_step = small_step_deficit > 0 or f_difference == 0
            if binary_step:
                guess = (l + h) >> 1
                small_step_deficit -= 1
            else:
                arg_difference = arg_appr - f_l
                adj = tdiv(arg_difference * difference, f_difference)
                if adj < (difference >> 10):
                    # Close to the left end: aim a little further right
                    adj <<= 8
                elif adj > ((difference * 1023) >> 10):
                    adj = difference - ((difference - adj) << 8)
                if adj <= 0:
                    adj = 2
                if adj >= difference:
                    adj = difference - 2
                guess = l + 2 if adj <= 0 else l + adj

            tweak = 2
            adj_prec = False
            while True:
                f_guess = self._eval_at(guess, working_arg_prec, working_eval_prec)
                outcome = _sloppy_compare(f_guess, arg_appr)
                if outcome != 0:
                    break
                if adj_prec:
                    adjustment = min(-(f_guess.bit_length() // 4), -20)
                    working_eval_prec += adjustment
                    if at_left:
                        f_l = owner.f_low.approximate(working_eval_prec)
                    else:
                        f_l = self._eval_at(l, working_arg_prec, working_eval_prec)
                    if at_right:
                        f_h = owner.f_high.approximate(working_eval_prec)
                    else:
                        f_h = self._eval_at(h, working_arg_prec, working_eval_prec)
                    arg_appr = self.arg.approximate(working_eval_prec)
                else:
                    new_guess = guess + tweak
                    guess = guess - tweak if new_guess >= h else new_guess
                    tweak = -tweak
                adj_prec = not adj_prec

            if outcome > 0:
                h = guess
                f_h = f_guess
                at_right = False
            else:
                l = guess
                f_l = f_guess
                at_left = False
            new_difference = h - l
            if not binary_step:
                if new_difference >= (difference >> 1):
                    small_step_deficit += 1
                else:
                    small_step_deficit -= 1
            difference = new_difference


class MonotoneDerivativeFunction(UnaryFunction):
    """Derivative of a function by symmetric difference quotients."""

    def __init__(self, func: UnaryFunction, low: CReal, high: CReal) -> None:
        self.f = func
        self.low = low
        self.high = high
        self.mid = low.add(high).shift_right(1)
        f_low = func.execute(low)
        f_mid = func.execute(self.mid)
        f_high = func.execute(high)
        difference = high.subtract(low)
        appr_diff2 = f_high.subtract(f_mid.shift_left(1)).add(f_low)
        self.difference_msd = difference.msd()
        self.deriv2_msd = appr_diff2.msd() - self.difference_msd + 4

    def execute(self, x: CReal) -> CReal:
        return MonotoneDerivativeCReal(self, x)


class MonotoneDerivativeCReal(CReal):
    EXTRA_PREC = 4

    def __init__(self, owner: MonotoneDerivativeFunction, arg: CReal) -> None:
        super().__init__()
        self.owner = owner
        self.arg = arg
        self.f_arg = owner.f.execute(arg)
        left_diff = arg.subtract(owner.low)
        max_delta_left_msd = left_diff.msd()
        right_diff = owner.high.subtract(arg)
        max_delta_right_msd = right_diff.msd()
        if left_diff.signum() < 0 or right_diff.signum() < 0:
            raise DomainError("fn not monotone")
        self.max_delta_msd = min(max_delta_left_msd, max_delta_right_msd)

    def _approximate(self, p: int) -> int:
        owner = self.owner
        while True:
            log_delta = min(p - owner.deriv2_msd, self.max_delta_msd) - self.EXTRA_PREC
            delta = ONE.shift_left(log_delta)
            f_left = owner.f.execute(self.arg.subtract(delta))
            f_right = owner.f.execute(self.arg.add(delta))
            left_deriv = self.f_arg.subtract(f_left).shift_right(log_delta)
            right_deriv = f_right.subtract(self.f_arg).shift_right(log_delta)
            eval_prec = p - self.EXTRA_PREC
            appr_left_deriv = left_deriv.approximate(eval_prec)
            appr_right_deriv = right_deriv.approximate(eval_prec)
            deriv_difference = abs(appr_right_deriv - appr_left_deriv)
            if deriv_difference < 8:
                return scale(appr_left_deriv + appr_right_deriv, -self.EXTRA_PREC - 1)
            check_cancelled()
            # Second derivative estimate was too optimistic; shrink delta
            owner.deriv2_msd = eval_prec + deriv_difference.bit_length() + 4 - log_delta
