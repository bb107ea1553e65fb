"""Test error codes returned by various functions."""

import unittest

from exactcalc_pkg import creal
from exactcalc_pkg.creal import CancellationToken, cancellation_scope
from exactcalc_pkg.parser import evaluate_eval_text, preprocess
from exactcalc_pkg.types import CalculatorError, DivideByZeroError, DomainError, ValidationError


class TestErrorCodes(unittest.TestCase):
    """Test that functions raise errors carrying the appropriate code."""

    def assert_code(self, code, func, *args, **kwargs):
        with self.assertRaises(CalculatorError) as ctx:
            func(*args, **kwargs)
        self.assertEqual(ctx.exception.code, code)
        return ctx.exception

    def test_validation_codes(self):
        self.assert_code("EMPTY_INPUT", preprocess, "   ")
        self.assert_code("TOO_LONG", preprocess, "1" * 10001)
        self.assert_code("UNMATCHED_QUOTES", preprocess, "'1'")
        error = self.assert_code("FORBIDDEN_TOKEN", preprocess, "open(1)")
        self.assertIn("forbidden", str(error).lower())
        error = self.assert_code("UNBALANCED_PARENS", preprocess, "1+2))")
        self.assertIn("^", error.message)

    def test_syntax_codes(self):
        self.assert_code("SYNTAX_ERROR", evaluate_eval_text, "3 * ( 2 + )")
        self.assert_code("SYNTAX_ERROR", evaluate_eval_text, "x + 1")

    def test_domain_codes(self):
        self.assert_code("DIVIDE_BY_ZERO", evaluate_eval_text, "5 / ( 2 - 2 )")
        self.assert_code("DOMAIN_ERROR", evaluate_eval_text, "tan( pi / 2 )")
        self.assert_code("DOMAIN_ERROR", evaluate_eval_text, "asin( 2 )")
        self.assert_code("DOMAIN_ERROR", evaluate_eval_text, "factorial( -1 )")
        self.assert_code("DOMAIN_ERROR", evaluate_eval_text, "( -8 ) ^ ( 1 / 3 )")

    def test_cancellation_code(self):
        token = CancellationToken()
        token.cancel()
        with cancellation_scope(token):
            error = self.assert_code("ABORTED", creal.from_int(1).exp().approximate, -200)
        self.assertEqual(str(error), "Computation aborted")

    def test_default_codes(self):
        self.assertEqual(DivideByZeroError().code, "DIVIDE_BY_ZERO")
        self.assertTrue(issubclass(DivideByZeroError, DomainError))
        self.assertEqual(ValidationError("bad").code, "VALIDATION_ERROR")
        self.assertEqual(ValidationError("bad", "CUSTOM").code, "CUSTOM")


if __name__ == "__main__":
    unittest.main()
