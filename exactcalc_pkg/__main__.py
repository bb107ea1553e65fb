"""Main entry point for running exactcalc_pkg as a module.

This allows running exactcalc with:
    python -m exactcalc_pkg
    python -m exactcalc_pkg -e "sqrt(2)"
    python -m exactcalc_pkg --digits 100 -e "pi"

This is equivalent to running:
    python -m exactcalc_pkg.cli
    python exactcalc.py
"""

from __future__ import annotations

import sys

from .cli import main_entry

if __name__ == "__main__":
    sys.exit(main_entry())
