"""Error taxonomy and result dataclasses shared by the evaluation engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TIMEOUT = "TIMEOUT"


class CalculatorError(Exception):
    """Base class for errors reported by the calculator core."""

    default_code = "CALCULATOR_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ValidationError(CalculatorError):
    """Raised when input validation fails."""

    default_code = "VALIDATION_ERROR"


class ExpressionSyntaxError(CalculatorError):
    """Raised when an expression is malformed."""

    default_code = "SYNTAX_ERROR"


class DomainError(CalculatorError):
    """Raised for arguments outside a function's domain, or not-a-number results."""

    default_code = "DOMAIN_ERROR"


class DivideByZeroError(DomainError):
    """Raised when dividing by a value that is exactly zero."""

    default_code = "DIVIDE_BY_ZERO"

    def __init__(self, message: str = "Division by zero", code: str | None = None):
        super().__init__(message, code)


class PrecisionOverflowError(CalculatorError):
    """Raised when a required working precision exceeds the internal bound."""

    default_code = "PRECISION_OVERFLOW"

    def __init__(self, message: str = "Precision overflow", code: str | None = None):
        super().__init__(message, code)


class AbortedError(CalculatorError):
    """Raised inside a computation that observed a cancellation request."""

    default_code = "ABORTED"

    def __init__(self, message: str = "Computation aborted", code: str | None = None):
        super().__init__(message, code)


@dataclass
class InitialResult:
    """Outcome of an initial evaluation task."""

    error_code: str | None = None
    value: Any = None
    result_string: str | None = None
    result_string_offset: int = 0
    init_display_offset: int = 0

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if self.is_error:
            return {"ok": False, "error_code": self.error_code}
        return {
            "ok": True,
            "result": self.result_string,
            "offset": self.result_string_offset,
            "display_offset": self.init_display_offset,
        }

    def __repr__(self) -> str:
        if self.is_error:
            return f"InitialResult(error_code={self.error_code!r})"
        return (
            f"InitialResult(result_string={self.result_string!r}, "
            f"result_string_offset={self.result_string_offset}, "
            f"init_display_offset={self.init_display_offset})"
        )


@dataclass
class RefinementResult:
    """Outcome of a refinement task: a longer truncated string."""

    result_string: str
    result_string_offset: int


@dataclass
class DisplayString:
    """A window of cached digits prepared for display."""

    text: str
    prec_offset: int
    truncated: bool = False
    negative: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "text": self.text,
            "prec_offset": self.prec_offset,
            "truncated": self.truncated,
            "negative": self.negative,
        }
