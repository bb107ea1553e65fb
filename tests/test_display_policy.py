"""Tests for result display heuristics."""

import unittest
from fractions import Fraction

from exactcalc_pkg import real_value as rv
from exactcalc_pkg.display_policy import (
    ELLIPSIS,
    INVALID_MSD,
    LSD_UNKNOWN,
    LSD_ZERO,
    DummyCharMetrics,
    TerminalCharMetrics,
    add_commas,
    lsd_offset,
    msd_index_of,
    preferred_prec,
    short_string,
    unflip_zeroes,
)
from exactcalc_pkg.real_value import RealValue


class TestDigitPositions(unittest.TestCase):
    def test_msd_index(self):
        self.assertEqual(msd_index_of("12.5"), 0)
        self.assertEqual(msd_index_of("0.000123"), 5)
        self.assertEqual(msd_index_of("-0.25"), 3)

    def test_msd_index_of_uncertain_zero(self):
        self.assertEqual(msd_index_of("0.0000"), INVALID_MSD)
        # A trailing 1 may be an error in the last place
        self.assertEqual(msd_index_of("-0.001"), INVALID_MSD)
        self.assertEqual(msd_index_of("0.0011"), 4)

    def test_lsd_offset(self):
        self.assertEqual(lsd_offset(RealValue(Fraction(1, 4)), "0.2500", 1), 2)
        self.assertEqual(lsd_offset(RealValue(1200), "1200.000", 4), -3)
        self.assertEqual(lsd_offset(RealValue(7), "7.000", 1), -1)
        self.assertEqual(lsd_offset(rv.ZERO, "0.000", 1), LSD_ZERO)
        self.assertEqual(lsd_offset(rv.PI, "3.141", 1), LSD_UNKNOWN)


class TestPreferredPrecision(unittest.TestCase):
    def test_integer_shown_without_point(self):
        self.assertEqual(preferred_prec("1024.0000", 0, -1, TerminalCharMetrics(20)), -1)

    def test_terminating_fraction_shown_in_full(self):
        self.assertEqual(preferred_prec("0.2500", 2, 2, TerminalCharMetrics(20)), 2)

    def test_nonterminating_fills_the_line(self):
        cache = "0." + "3" * 50
        self.assertEqual(preferred_prec(cache, 2, LSD_UNKNOWN, TerminalCharMetrics(40)), 38)

    def test_huge_integer_uses_exponent(self):
        cache = "1" + "0" * 50 + "." + "0" * 50
        self.assertEqual(preferred_prec(cache, 0, -51, TerminalCharMetrics(40)), -12)

    def test_separators_reduce_room(self):
        cache = "1234567." + "1" * 40
        plain = preferred_prec(cache, 0, LSD_UNKNOWN, TerminalCharMetrics(20))
        with_commas = preferred_prec(cache, 0, LSD_UNKNOWN, TerminalCharMetrics(20, True))
        self.assertEqual(plain - with_commas, 2)


class TestShortStrings(unittest.TestCase):
    def test_add_commas(self):
        self.assertEqual(add_commas("1234567", 0, 7), "1,234,567")
        self.assertEqual(add_commas("-1234", 0, 5), "-1,234")
        self.assertEqual(add_commas("123", 0, 3), "123")

    def test_exact_whole_number(self):
        self.assertEqual(short_string("5." + "0" * 20, 0, -1), "5")

    def test_repeating_fraction(self):
        self.assertEqual(short_string("0." + "3" * 12, 2, LSD_UNKNOWN), "0.33333" + ELLIPSIS)

    def test_terminating_fraction(self):
        self.assertEqual(short_string("0.250000000000", 2, 2), "0.25")

    def test_uncertain_zero(self):
        self.assertEqual(short_string("0.0000000000", INVALID_MSD, LSD_ZERO), "0")

    def test_dummy_metrics(self):
        self.assertEqual(DummyCharMetrics().max_chars(), 18)


class TestUnflipZeroes(unittest.TestCase):
    def test_no_trailing_nines(self):
        self.assertEqual(unflip_zeroes("0.1234", 4, "0.123456", 6), "0.123456")

    def test_flipped_nines_are_restored(self):
        self.assertEqual(unflip_zeroes("0.1299", 4, "0.130000", 6), "0.129999")

    def test_consistent_nines(self):
        self.assertEqual(unflip_zeroes("0.1299", 4, "0.129987", 6), "0.129987")

    def test_inconsistent_refinement_is_a_bug(self):
        with self.assertRaises(AssertionError):
            unflip_zeroes("0.1299", 4, "0.130012", 6)


if __name__ == "__main__":
    unittest.main()
