"""Tests for size-bounded rational arithmetic."""

from fractions import Fraction

import pytest

from exactcalc_pkg import bounded_rational as br
from exactcalc_pkg.types import DivideByZeroError, DomainError


def test_none_propagates():
    assert br.add(None, br.ONE) is None
    assert br.multiply(br.HALF, None) is None
    assert br.negate(None) is None
    assert br.sqrt(None) is None


def test_arithmetic():
    assert br.add(br.HALF, br.THIRD) == Fraction(5, 6)
    assert br.subtract(br.HALF, br.THIRD) == Fraction(1, 6)
    assert br.multiply(br.HALF, br.THIRD) == br.SIXTH
    assert br.divide(br.ONE, Fraction(4)) == br.QUARTER


def test_inverse_of_zero():
    with pytest.raises(DivideByZeroError):
        br.inverse(br.ZERO)


def test_oversized_results_become_none():
    huge = Fraction(1, 3**4000)
    assert not br.too_big(huge)
    assert br.multiply(huge, huge) is None
    # Integers are never considered too big
    assert br.multiply(Fraction(10**4000), Fraction(10**4000)) == Fraction(10**8000)


def test_sqrt():
    assert br.sqrt(Fraction(9, 16)) == Fraction(3, 4)
    assert br.sqrt(Fraction(2)) is None
    with pytest.raises(DomainError):
        br.sqrt(Fraction(-4))


def test_int_pow():
    assert br.int_pow(Fraction(2, 3), 3) == Fraction(8, 27)
    assert br.int_pow(Fraction(2), -2) == br.QUARTER
    assert br.int_pow(br.MINUS_ONE, 10**9 + 1) == br.MINUS_ONE
    assert br.int_pow(Fraction(3, 2), 1 << 1200) is None


def test_pow_requires_integer_exponent():
    assert br.pow(Fraction(4), br.HALF) is None
    assert br.pow(Fraction(4), Fraction(2)) == Fraction(16)


def test_as_int_and_whole_number_bits():
    assert br.as_int(Fraction(6, 2)) == 3
    assert br.as_int(br.HALF) is None
    assert br.whole_number_bits(br.ZERO) is None
    assert br.whole_number_bits(Fraction(1024)) == 10


def test_digits_required():
    assert br.digits_required(Fraction(7)) == 0
    assert br.digits_required(Fraction(1, 8)) == 3
    assert br.digits_required(Fraction(3, 40)) == 3
    assert br.digits_required(br.THIRD) is None


def test_to_string_truncated():
    assert br.to_string_truncated(Fraction(-1, 3), 3) == "-0.333"
    assert br.to_string_truncated(Fraction(7, 4), 1) == "1.7"
    assert br.to_string_truncated(Fraction(1, 200), 2) == "0.00"
    assert br.to_string_truncated(Fraction(5), 0) == "5."


def test_nice_string_and_creal():
    assert br.to_nice_string(Fraction(3, 4)) == "3/4"
    assert br.to_nice_string(Fraction(-12)) == "-12"
    assert float(br.cr_value(Fraction(3, 4))) == pytest.approx(0.75)
