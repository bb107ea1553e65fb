"""Centralized configuration for exactcalc.

This module defines:
- Evaluation timeouts and result-size ceilings
- Precision heuristics used when computing and refining results
- Input validation limits
- Storage locations for history and preferences
- Allowed SymPy names and parser transformations
- Regex patterns for preprocessing

Configuration can be overridden via:
- CLI flags (see cli.py)
- Environment variables (prefixed with EXACTCALC_)
"""

import os
import re
from pathlib import Path

import sympy as sp
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    rationalize,
    standard_transformations,
)

try:
    import importlib.metadata

    VERSION = importlib.metadata.version("exactcalc")
except Exception:
    # Package metadata is missing when running from a source checkout
    VERSION = "1.0.0"

# Timeouts, in seconds (can be overridden via environment variables)
QUICK_TIMEOUT = float(os.getenv("EXACTCALC_QUICK_TIMEOUT", "1.0"))
SHORT_TIMEOUT = float(os.getenv("EXACTCALC_SHORT_TIMEOUT", "2.0"))
LONG_TIMEOUT = float(os.getenv("EXACTCALC_LONG_TIMEOUT", "15.0"))
NON_MAIN_TIMEOUT = float(os.getenv("EXACTCALC_NON_MAIN_TIMEOUT", "100.0"))

# Largest whole-number part, in bits, we attempt to convert to decimal
SHORT_MAX_RESULT_BITS = int(os.getenv("EXACTCALC_SHORT_MAX_RESULT_BITS", "240000"))
LONG_MAX_RESULT_BITS = int(os.getenv("EXACTCALC_LONG_MAX_RESULT_BITS", "700000"))
QUICK_MAX_RESULT_BITS = int(os.getenv("EXACTCALC_QUICK_MAX_RESULT_BITS", "150000"))

# Precision heuristics (all offsets are decimal digits right of the point)
INIT_PREC = int(os.getenv("EXACTCALC_INIT_PREC", "50"))
MAX_MSD_PREC_OFFSET = int(os.getenv("EXACTCALC_MAX_MSD_PREC_OFFSET", "1100"))
EXTRA_DIGITS = int(os.getenv("EXACTCALC_EXTRA_DIGITS", "20"))
EXTRA_DIVISOR = int(os.getenv("EXACTCALC_EXTRA_DIVISOR", "5"))
PRECOMPUTE_DIGITS = int(os.getenv("EXACTCALC_PRECOMPUTE_DIGITS", "30"))
PRECOMPUTE_DIVISOR = int(os.getenv("EXACTCALC_PRECOMPUTE_DIVISOR", "5"))
MIN_DISPLAYED_DIGS = int(os.getenv("EXACTCALC_MIN_DISPLAYED_DIGS", "5"))

# Result display
DISPLAY_WIDTH = int(os.getenv("EXACTCALC_DISPLAY_WIDTH", "40"))  # digit positions
MAX_RIGHT_SCROLL = 10_000_000

# Background evaluation
MAX_BACKGROUND_TASKS = int(os.getenv("EXACTCALC_MAX_BACKGROUND_TASKS", "32"))

# Input validation limits
MAX_INPUT_LENGTH = int(os.getenv("EXACTCALC_MAX_INPUT_LENGTH", "10000"))  # characters

# Storage
DATA_DIR = Path(os.getenv("EXACTCALC_DATA_DIR", str(Path.home() / ".exactcalc")))
HISTORY_FILE_NAME = "history.jsonl"
PREFERENCES_FILE_NAME = "preferences.json"

# Functions that must never be evaluated eagerly by SymPy while parsing.
# factorial(10**9) would otherwise be computed before we see it; "log" is base 10.
FACTORIAL = sp.Function("factorial")
LOG10 = sp.Function("log10")

ALLOWED_SYMPY_NAMES = {
    "pi": sp.pi,
    "E": sp.E,
    "e": sp.E,
    "sqrt": sp.sqrt,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "asin": sp.asin,
    "acos": sp.acos,
    "atan": sp.atan,
    "log": LOG10,
    "ln": sp.log,
    "log10": LOG10,
    "exp": sp.exp,
    "factorial": FACTORIAL,
}

TRANSFORMATIONS = standard_transformations + (
    implicit_multiplication_application,
    convert_xor,
    rationalize,
)

SQRT_UNICODE_REGEX = re.compile(r"√\s*\(")
SQRT_UNICODE_ATOM_REGEX = re.compile(r"√\s*(\d+(?:\.\d+)?|pi|e)")
