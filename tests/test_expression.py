"""Tests for editable calculator expressions."""

import unittest
from fractions import Fraction

from exactcalc_pkg.display_policy import ELLIPSIS
from exactcalc_pkg.expression import CalculatorExpr, ExprResolver, PreEval
from exactcalc_pkg.real_value import RealValue
from exactcalc_pkg.types import ExpressionSyntaxError, ValidationError


class DictResolver(ExprResolver):
    """Stored expressions and results kept in plain dicts."""

    def __init__(self, exprs=None, results=None):
        self.exprs = exprs or {}
        self.results = results or {}

    def expr_get(self, index):
        return self.exprs[index]

    def degree_mode_get(self, index):
        return False

    def result_get(self, index):
        return self.results.get(index)

    def put_result_if_absent(self, index, result):
        return self.results.setdefault(index, result)


def evaluate(text, degree_mode=False, resolver=None):
    return CalculatorExpr.from_text(text).eval(degree_mode, resolver or DictResolver())


class TestEditing(unittest.TestCase):
    def test_binary_operator_needs_left_operand(self):
        expr = CalculatorExpr()
        self.assertFalse(expr.add("*"))
        self.assertTrue(expr.add("-"))
        self.assertTrue(expr.add("("))
        self.assertFalse(expr.add("/"))

    def test_binary_operator_after_function_refused(self):
        expr = CalculatorExpr()
        self.assertTrue(expr.add("sin"))
        self.assertFalse(expr.add("*"))

    def test_binary_operator_replaces_trailing_operator(self):
        expr = CalculatorExpr()
        for key in ("2", "+", "*"):
            self.assertTrue(expr.add(key))
        self.assertEqual(str(expr), "2×")

    def test_constant_entry(self):
        expr = CalculatorExpr()
        self.assertTrue(expr.add("1"))
        self.assertTrue(expr.add("."))
        self.assertFalse(expr.add("."))
        self.assertTrue(expr.add("5"))
        self.assertEqual(str(expr), "1.5")
        self.assertTrue(expr.is_constant)

    def test_delete(self):
        expr = CalculatorExpr.from_text("12+")
        expr.delete()
        self.assertEqual(str(expr), "12")
        expr.delete()
        self.assertEqual(str(expr), "1")
        expr.delete()
        self.assertTrue(expr.is_empty)
        expr.delete()
        self.assertTrue(expr.is_empty)

    def test_digit_after_reference_multiplies(self):
        expr = CalculatorExpr([PreEval(1, "5")])
        expr.add("2")
        self.assertEqual(str(expr), "5×2")

    def test_append_multiplies_adjacent_operands(self):
        expr = CalculatorExpr.from_text("2")
        expr.append(CalculatorExpr([PreEval(1, "3")]))
        self.assertEqual(str(expr), "2×3")
        expr.add("+")
        expr.append(CalculatorExpr([PreEval(2, "4")]))
        self.assertEqual(str(expr), "2×3+4")

    def test_remove_trailing_additive_operators(self):
        expr = CalculatorExpr.from_text("2*3-")
        expr.remove_trailing_additive_operators()
        self.assertEqual(str(expr), "2×3")

    def test_abbreviate(self):
        short = CalculatorExpr.from_text("1/3").abbreviate(7, "0.33333" + ELLIPSIS)
        self.assertEqual(len(short), 1)
        self.assertEqual(short.tokens[0].index, 7)
        self.assertEqual(short.to_text(), "0.33333" + ELLIPSIS)


class TestTypedText(unittest.TestCase):
    def test_display_form(self):
        self.assertEqual(str(CalculatorExpr.from_text("2pi")), "2π")
        self.assertEqual(str(CalculatorExpr.from_text("sqrt(2)")), "√(2)")
        self.assertEqual(str(CalculatorExpr.from_text("3-1")), "3−1")
        self.assertEqual(str(CalculatorExpr.from_text("1234+5")), "1,234+5")
        self.assertEqual(str(CalculatorExpr.from_text("1.5e3")), "1.5E3")
        self.assertEqual(str(CalculatorExpr.from_text("sin(1)")), "sin(1)")

    def test_adjacent_numbers_merge(self):
        self.assertEqual(str(CalculatorExpr.from_text("2 3")), "23")

    def test_bad_text(self):
        with self.assertRaises(ExpressionSyntaxError):
            CalculatorExpr.from_text("foo")
        with self.assertRaises(ExpressionSyntaxError):
            CalculatorExpr.from_text("2$")
        with self.assertRaises(ValidationError):
            CalculatorExpr.from_text("1+2)")


class TestEvaluation(unittest.TestCase):
    def test_arithmetic(self):
        self.assertEqual(evaluate("2^10").int_value(), 1024)
        self.assertEqual(evaluate("1/4+1/4").bounded_rational_value(), Fraction(1, 2))
        self.assertEqual(evaluate("1.5e3").int_value(), 1500)
        self.assertEqual(evaluate("-3*-2").int_value(), 6)

    def test_trailing_binary_operator_ignored(self):
        self.assertEqual(evaluate("2+3*").int_value(), 5)

    def test_unclosed_parentheses_are_closed(self):
        self.assertEqual(evaluate("sqrt(4").int_value(), 2)
        self.assertEqual(evaluate("2*(1+2").int_value(), 6)
        text, names = CalculatorExpr.from_text("sqrt(4").to_eval_text()
        self.assertEqual(text, "sqrt( 4 )")
        self.assertEqual(names, {})

    def test_percent(self):
        self.assertEqual(evaluate("50%").bounded_rational_value(), Fraction(1, 2))
        self.assertEqual(evaluate("200*10%").int_value(), 20)
        self.assertEqual(evaluate("50+10%").int_value(), 55)
        self.assertEqual(evaluate("50-10%").int_value(), 45)

    def test_factorial(self):
        self.assertEqual(evaluate("5!").int_value(), 120)
        self.assertEqual(evaluate("(1+2)!").int_value(), 6)
        self.assertEqual(evaluate("3!!").int_value(), 720)
        self.assertEqual(evaluate("2*3!").int_value(), 12)

    def test_functions_and_constants(self):
        self.assertEqual(evaluate("2pi").to_nice_string(), "2π")
        self.assertEqual(evaluate("log(1000)").int_value(), 3)
        self.assertEqual(evaluate("ln(e)").int_value(), 1)
        self.assertEqual(evaluate("sin(30)", degree_mode=True).bounded_rational_value(), Fraction(1, 2))

    def test_references(self):
        resolver = DictResolver(results={3: RealValue(Fraction(1, 2))})
        expr = CalculatorExpr([PreEval(3, "0.5")])
        expr.add("*")
        expr.add("4")
        text, names = expr.to_eval_text()
        self.assertEqual(names, {"_r3": 3})
        self.assertEqual(expr.eval(False, resolver).int_value(), 2)

    def test_negative_reference_name(self):
        self.assertEqual(PreEval(-11, "1").name, "_rm11")
        self.assertEqual(PreEval(4, "1").name, "_r4")

    def test_nested_evaluation_caches_results(self):
        resolver = DictResolver(
            exprs={
                5: CalculatorExpr.from_text("1+1"),
                6: CalculatorExpr([PreEval(5, "2")]),
            }
        )
        resolver.exprs[6].add("*")
        resolver.exprs[6].add("5")
        expr = CalculatorExpr([PreEval(6, "10")])
        expr.add("+")
        expr.add("1")
        self.assertEqual(expr.get_transitively_referenced_exprs(resolver), [5, 6])
        self.assertEqual(expr.eval(False, resolver).int_value(), 11)
        self.assertEqual(resolver.results[5].int_value(), 2)
        self.assertEqual(resolver.results[6].int_value(), 10)

    def test_empty_expression(self):
        with self.assertRaises(ExpressionSyntaxError):
            CalculatorExpr().eval(False, DictResolver())


class TestQueries(unittest.TestCase):
    def test_has_trig_funcs(self):
        self.assertTrue(CalculatorExpr.from_text("1+sin(1)").has_trig_funcs())
        self.assertFalse(CalculatorExpr.from_text("ln(2)").has_trig_funcs())

    def test_has_interesting_ops(self):
        self.assertFalse(CalculatorExpr.from_text("-5").has_interesting_ops())
        self.assertFalse(CalculatorExpr.from_text("5+").has_interesting_ops())
        self.assertTrue(CalculatorExpr.from_text("2+3").has_interesting_ops())
        self.assertFalse(CalculatorExpr([PreEval(1, "0.25")]).has_interesting_ops())
        self.assertTrue(CalculatorExpr([PreEval(1, "0.33" + ELLIPSIS)]).has_interesting_ops())


class TestSerialization(unittest.TestCase):
    def test_bytes_round_trip(self):
        expr = CalculatorExpr.from_text("1.5e3*sqrt(2)+")
        expr.append(CalculatorExpr([PreEval(-12, "7")]))
        restored = CalculatorExpr.from_bytes(expr.to_bytes())
        self.assertEqual(str(restored), str(expr))
        self.assertEqual(restored.to_list(), expr.to_list())

    def test_round_trip_evaluates_identically(self):
        expr = CalculatorExpr.from_text("2pi/3+ln(2)*")
        expr.append(CalculatorExpr([PreEval(4, "7")]))
        restored = CalculatorExpr.from_bytes(expr.to_bytes())
        original_value = expr.eval(False, DictResolver(results={4: RealValue(7)}))
        restored_value = restored.eval(False, DictResolver(results={4: RealValue(7)}))
        for prec in (0, 5, 20, 60):
            with self.subTest(prec=prec):
                self.assertEqual(
                    restored_value.to_string_truncated(prec),
                    original_value.to_string_truncated(prec),
                )

    def test_bad_bytes(self):
        with self.assertRaises(ValueError):
            CalculatorExpr.from_bytes(b"garbage")
        with self.assertRaises(ValueError):
            CalculatorExpr.from_bytes(b'[{"kind": "mystery"}]')

    def test_clone_is_independent(self):
        expr = CalculatorExpr.from_text("12")
        copy = expr.clone()
        copy.add("3")
        self.assertEqual(str(expr), "12")
        self.assertEqual(str(copy), "123")


if __name__ == "__main__":
    unittest.main()
