"""exactcalc: an exact-real calculator engine with asynchronous, precision-adaptive display."""

from .config import VERSION
from .creal import CReal
from .evaluator import (
    HISTORY_MAIN_INDEX,
    MAIN_INDEX,
    EvaluationListener,
    Evaluator,
    EvaluatorCallback,
    MainThreadDispatcher,
)
from .expression import CalculatorExpr
from .real_value import RealValue
from .unary_function import UnaryFunction

__version__ = VERSION

__all__ = [
    "config",
    "creal",
    "unary_function",
    "bounded_rational",
    "real_value",
    "display_policy",
    "parser",
    "expression",
    "expression_store",
    "preferences",
    "evaluator",
    "cli",
    "types",
    "logging_config",
]

# Public API exports

__api_exports__ = [
    "CReal",
    "UnaryFunction",
    "RealValue",
    "CalculatorExpr",
    "Evaluator",
    "EvaluationListener",
    "EvaluatorCallback",
    "MainThreadDispatcher",
    "MAIN_INDEX",
    "HISTORY_MAIN_INDEX",
]
