"""Tests for RealValue, the exact-where-possible number type."""

import math
import unittest
from fractions import Fraction

from exactcalc_pkg import real_value as rv
from exactcalc_pkg.real_value import RealValue
from exactcalc_pkg.types import DivideByZeroError, DomainError


class TestExactArithmetic(unittest.TestCase):
    def test_rational_arithmetic_stays_exact(self):
        third = RealValue(Fraction(1, 3))
        self.assertEqual(third.add(third).add(third).int_value(), 1)
        self.assertEqual(RealValue(6).divide(RealValue(4)).bounded_rational_value(), Fraction(3, 2))

    def test_same_irrational_cancels(self):
        self.assertTrue(rv.PI.subtract(rv.PI).definitely_zero())
        self.assertEqual(rv.PI.multiply(rv.TWO).divide(rv.PI).int_value(), 2)

    def test_divide_by_zero(self):
        with self.assertRaises(DivideByZeroError):
            rv.ONE.divide(rv.ZERO)
        with self.assertRaises(DivideByZeroError):
            rv.ZERO.inverse()

    def test_sqrt(self):
        self.assertEqual(RealValue(Fraction(9, 4)).sqrt().bounded_rational_value(), Fraction(3, 2))
        root8 = RealValue(8).sqrt()
        self.assertEqual(root8.to_nice_string(), "2√2")
        self.assertTrue(root8.definitely_irrational())
        root2 = RealValue(2).sqrt()
        self.assertEqual(root2.pow(rv.TWO).int_value(), 2)
        self.assertEqual(root2.multiply(root2).int_value(), 2)

    def test_fractional_power_of_two(self):
        self.assertEqual(rv.TWO.pow(rv.HALF).to_nice_string(), "√2")

    def test_integer_power(self):
        self.assertEqual(rv.TWO.pow(RealValue(10)).int_value(), 1024)
        self.assertEqual(rv.TWO.pow(RealValue(-2)).bounded_rational_value(), Fraction(1, 4))

    def test_negative_base_with_fractional_exponent(self):
        with self.assertRaises(DomainError):
            RealValue(-8).pow(RealValue(Fraction(1, 3)))


class TestTrigonometry(unittest.TestCase):
    def test_special_angles(self):
        sixth = RealValue(Fraction(1, 6), rv.CR_PI)
        self.assertEqual(sixth.sin().bounded_rational_value(), Fraction(1, 2))
        self.assertEqual(rv.PI.cos().int_value(), -1)
        self.assertEqual(rv.PI_OVER_4.tan().int_value(), 1)

    def test_tangent_undefined(self):
        with self.assertRaises(DomainError):
            rv.PI_OVER_2.tan()

    def test_inverse_functions(self):
        self.assertEqual(rv.HALF.asin().to_nice_string(), "(1/6)π")
        self.assertEqual(rv.ONE.atan().to_nice_string(), "(1/4)π")
        self.assertEqual(rv.ONE.acos().int_value(), 0)

    def test_asin_out_of_range(self):
        with self.assertRaises(DomainError):
            rv.TWO.asin()

    def test_degrees(self):
        thirty = RealValue(30).multiply(rv.RADIANS_PER_DEGREE)
        self.assertEqual(thirty.sin().bounded_rational_value(), Fraction(1, 2))

    def test_generic_argument(self):
        self.assertAlmostEqual(float(rv.ONE.sin()), math.sin(1), places=14)


class TestLogarithms(unittest.TestCase):
    def test_log10(self):
        self.assertEqual(RealValue(100).log10().int_value(), 2)
        self.assertEqual(RealValue(Fraction(1, 1000)).log10().int_value(), -3)

    def test_ln(self):
        self.assertEqual(RealValue(8).ln().to_nice_string(), "3ln(2)")
        self.assertEqual(rv.E.ln().int_value(), 1)
        self.assertTrue(rv.ONE.ln().definitely_zero())

    def test_exp_of_log(self):
        self.assertEqual(RealValue(2).ln().exp().int_value(), 2)
        self.assertIs(rv.ONE.exp(), rv.E)

    def test_ln_of_non_positive(self):
        with self.assertRaises(DomainError):
            rv.ZERO.ln()
        with self.assertRaises(DomainError):
            RealValue(-2).ln()


class TestFactorial(unittest.TestCase):
    def test_factorial(self):
        self.assertEqual(RealValue(5).fact().int_value(), 120)
        self.assertEqual(rv.ZERO.fact().int_value(), 1)

    def test_factorial_domain(self):
        with self.assertRaises(DomainError):
            RealValue(-1).fact()
        with self.assertRaises(DomainError):
            rv.HALF.fact()


class TestTruncationConsistency(unittest.TestCase):
    """Longer truncations refine shorter ones; each may be off by one in its last digit."""

    def test_longer_truncations_agree(self):
        values = {
            "pi": rv.PI,
            "sqrt(2)": rv.TWO.sqrt(),
            "ln(2)": rv.TWO.ln(),
            "e^10": rv.TEN.exp(),
            "sin(1)": rv.ONE.sin(),
        }
        precisions = [3, 10, 25, 60]
        for name, value in values.items():
            truncations = [Fraction(value.to_string_truncated(p)) for p in precisions]
            for i, p1 in enumerate(precisions):
                for j in range(i + 1, len(precisions)):
                    with self.subTest(value=name, p1=p1, p2=precisions[j]):
                        self.assertLess(abs(truncations[j] - truncations[i]), Fraction(3, 10**p1))


class TestDisplaySupport(unittest.TestCase):
    def test_to_string_truncated(self):
        self.assertEqual(rv.PI.to_string_truncated(5), "3.14159")
        self.assertEqual(RealValue(Fraction(-1, 3)).to_string_truncated(3), "-0.333")
        self.assertEqual(RealValue(Fraction(2, 3)).to_string_truncated(4), "0.6666")
        self.assertEqual(rv.E.to_string_truncated(10), "2.7182818284")

    def test_digits_required(self):
        self.assertEqual(RealValue(Fraction(1, 8)).digits_required(), 3)
        self.assertEqual(RealValue(12).digits_required(), 0)
        self.assertIsNone(RealValue(Fraction(1, 3)).digits_required())
        self.assertIsNone(rv.PI.digits_required())

    def test_nice_strings(self):
        self.assertEqual(RealValue(Fraction(3, 4)).to_nice_string(), "3/4")
        self.assertEqual(RealValue(2, rv.CR_PI).to_nice_string(), "2π")
        self.assertEqual(rv.HALF_SQRT3.to_nice_string(), "(1/2)√3")

    def test_leading_binary_zeroes(self):
        self.assertEqual(RealValue(Fraction(1, 1024)).leading_binary_zeroes(), 13)
        self.assertEqual(RealValue(100).leading_binary_zeroes(), 0)

    def test_whole_number_bits(self):
        big = RealValue(2**100)
        self.assertTrue(big.approx_whole_number_bits_greater_than(50))
        self.assertFalse(big.approx_whole_number_bits_greater_than(200))


if __name__ == "__main__":
    unittest.main()
