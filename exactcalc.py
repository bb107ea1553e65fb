#!/usr/bin/env python3
"""
exactcalc - Exact real calculator

Main entry point for the exactcalc command-line calculator.
This file serves as a thin wrapper that delegates all functionality
to the exactcalc_pkg package.

Usage:
    python exactcalc.py                     # Interactive REPL
    python exactcalc.py -e "1/3"            # Evaluate expression
    python exactcalc.py --help              # Show help
"""

from __future__ import annotations

import sys


def main() -> int:
    """
    Main entry point for exactcalc.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    from exactcalc_pkg.cli import main_entry

    try:
        return main_entry(sys.argv[1:])
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
