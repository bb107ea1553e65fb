from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Optional

from . import config
from .config import VERSION
from .display_policy import (
    ELLIPSIS,
    INVALID_MSD,
    LSD_UNKNOWN,
    LSD_ZERO,
    TerminalCharMetrics,
)
from .evaluator import (
    EVAL_ERROR,
    MAIN_INDEX,
    EvaluationListener,
    Evaluator,
    EvaluatorCallback,
)
from .expression_store import MAXIMUM_MIN_INDEX
from .logging_config import get_logger, setup_logging
from .types import TIMEOUT, CalculatorError, DisplayString

logger = get_logger("cli")

ERROR_MESSAGES = {
    "DIVIDE_BY_ZERO": "Can't divide by 0",
    "DOMAIN_ERROR": "Not a number",
    "SYNTAX_ERROR": "Bad expression",
    "PRECISION_OVERFLOW": "Value too large",
    "ABORTED": "Cancelled",
    TIMEOUT: "Timed out",
    EVAL_ERROR: "Internal error",
}

REPL_COMMANDS = {
    "help": "Show this help",
    "quit": "Exit (also: exit)",
    "history": "List stored expressions",
    "clear": "Erase history and memory",
    "degrees": "Evaluate trigonometric functions in degrees",
    "radians": "Evaluate trigonometric functions in radians",
    "more": "Re-evaluate the last input with a longer timeout",
    "m+": "Add the last result to memory",
    "m-": "Subtract the last result from memory",
    "mr": "Show the value in memory",
}

# "@12" refers to the stored expression with index 12
REFERENCE_REGEX = re.compile(r"@(-?\d+)")


class _ResultListener(EvaluationListener):
    """Records the outcome of one request for a polling caller."""

    def __init__(self) -> None:
        self.status: Optional[str] = None
        self.error_code: Optional[str] = None
        self.init_prec_offset = 0
        self.msd_index = INVALID_MSD
        self.lsd_offset = LSD_UNKNOWN
        self.whole_part = ""
        self.refined = False

    @property
    def done(self) -> bool:
        return self.status is not None

    def on_evaluate(self, index, init_prec_offset, msd_index, lsd_offset, truncated_whole_part):
        self.status = "evaluated"
        self.init_prec_offset = init_prec_offset
        self.msd_index = msd_index
        self.lsd_offset = lsd_offset
        self.whole_part = truncated_whole_part

    def on_error(self, index, error_code):
        self.status = "error"
        self.error_code = error_code

    def on_cancelled(self, index):
        self.status = "cancelled"

    def on_reevaluate(self, index):
        self.refined = True


class _ConsoleCallback(EvaluatorCallback):
    def __init__(self, output_format: str = "human") -> None:
        self.output_format = output_format
        self.timed_out = False

    def show_timeout_message(self, long_timeout: bool) -> None:
        self.timed_out = True
        if self.output_format == "human":
            if long_timeout:
                print("Timed out.", file=sys.stderr)
            else:
                print("Timed out. Type 'more' to try again with a longer timeout.", file=sys.stderr)

    def show_cancelled_message(self) -> None:
        if self.output_format == "human":
            print("[Cancelled]", file=sys.stderr)


def format_display(ds: DisplayString, exact: bool) -> str:
    """Render a display window as plain text, using E notation for large offsets.

    Args:
        ds: Digits as returned by Evaluator.string_get
        exact: Whether the shown digits are the complete value

    Returns:
        Text such as "0.25", "3.14159…" or "1.2345E20"
    """
    text = ds.text.rstrip()
    if ds.prec_offset < -1:
        # The last digit shown has weight 10**(-prec_offset - 1)
        sign = "-" if text.startswith("-") else ""
        digits = text.lstrip("-")
        exponent = len(digits) - ds.prec_offset - 2
        mantissa = digits[0]
        if len(digits) > 1:
            mantissa += "." + digits[1:]
        if exact and "." in mantissa:
            mantissa = mantissa.rstrip("0").rstrip(".")
        text = f"{sign}{mantissa}E{exponent}"
    elif text.endswith("."):
        text = text[:-1]
    if not exact:
        text += ELLIPSIS
    return text


class CalculatorSession:
    """Drives an Evaluator from a blocking, line-oriented front end."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        digits: Optional[int] = None,
        long_timeout: bool = False,
        degree_mode: Optional[bool] = None,
        output_format: str = "human",
        width: int = config.DISPLAY_WIDTH,
    ) -> None:
        self.callback = _ConsoleCallback(output_format)
        self.evaluator = Evaluator(data_dir=data_dir, callback=self.callback)
        self.dispatcher = self.evaluator.dispatcher
        self.char_metrics = TerminalCharMetrics(width)
        self.width = width
        self.digits = digits
        self.long_timeout = long_timeout
        self.last_input: Optional[str] = None
        self.last_index: Optional[int] = None
        if degree_mode is not None:
            self.evaluator.set_degree_mode(degree_mode)

    def _wait(self, predicate) -> bool:
        return self.dispatcher.run_until(predicate, timeout=config.LONG_TIMEOUT + config.SHORT_TIMEOUT)

    def _request(self, index: int) -> _ResultListener:
        listener = _ResultListener()
        self.evaluator.require_result(index, listener, self.char_metrics)
        if not self._wait(lambda: listener.done):
            self.evaluator.cancel(index, True)
            listener.status = "error"
            listener.error_code = TIMEOUT
        return listener

    def _build(self, text: str) -> None:
        ev = self.evaluator
        ev.clear_main()
        pos = 0
        for m in REFERENCE_REGEX.finditer(text):
            if text[pos : m.start()].strip():
                ev.append_text(text[pos : m.start()])
            index = int(m.group(1))
            if MAXIMUM_MIN_INDEX <= index <= 0:
                raise CalculatorError(f"No stored expression @{index}", "BAD_REFERENCE")
            try:
                listener = self._request(index)
            except KeyError:
                raise CalculatorError(f"No stored expression @{index}", "BAD_REFERENCE") from None
            if listener.status != "evaluated":
                raise CalculatorError(
                    f"@{index} has no value", listener.error_code or TIMEOUT
                )
            ev.append_expr(index)
            pos = m.end()
        if text[pos:].strip():
            ev.append_text(text[pos:])
        if ev.main_expr.is_empty:
            raise CalculatorError("Empty input", "EMPTY_INPUT")
        if self.long_timeout:
            ev.set_long_timeout()

    def _display(self, index: int, listener: _ResultListener) -> tuple[DisplayString, bool]:
        lsd = listener.lsd_offset
        if lsd == LSD_UNKNOWN:
            max_prec = config.MAX_RIGHT_SCROLL
        elif lsd == LSD_ZERO:
            max_prec = -1
        else:
            max_prec = max(lsd, -1)
        prec = self.digits if self.digits is not None else listener.init_prec_offset
        if prec < -1:
            max_digs = self.width
        else:
            max_digs = len(listener.whole_part) + max(prec, 0) + 1
        while True:
            listener.refined = False
            ds = self.evaluator.string_get(index, prec, max_prec, max_digs, listener)
            complete = ds.text.strip() and not ds.text.endswith(" ")
            if complete or not self.evaluator.evaluation_in_progress(index):
                break
            if not self._wait(lambda: listener.refined or listener.status == "error"):
                raise CalculatorError("Timed out computing digits", TIMEOUT)
            if listener.status == "error":
                raise CalculatorError(
                    ERROR_MESSAGES.get(listener.error_code, "Error"), listener.error_code
                )
        exact = lsd == LSD_ZERO or (lsd != LSD_UNKNOWN and ds.prec_offset >= lsd)
        return ds, exact

    def evaluate(self, text: str) -> dict[str, Any]:
        """Evaluate a line of input and store it in history.

        Returns:
            Result dictionary with "ok" and either "result" or "error"
        """
        self.last_input = text
        self.callback.timed_out = False
        try:
            self._build(text)
            listener = self._request(MAIN_INDEX)
            if listener.status == "cancelled":
                return {"ok": False, "error": ERROR_MESSAGES[TIMEOUT], "error_code": TIMEOUT}
            if listener.status == "error":
                code = listener.error_code
                return {"ok": False, "error": ERROR_MESSAGES.get(code, code), "error_code": code}
            ds, exact = self._display(MAIN_INDEX, listener)
            index = self.evaluator.preserve(MAIN_INDEX, True)
        except CalculatorError as e:
            return {"ok": False, "error": e.message, "error_code": e.code}
        self.last_index = index
        logger.debug(f"Stored {text!r} as expression {index}")
        return {
            "ok": True,
            "input": text,
            "result": format_display(ds, exact),
            "exact": exact,
            "index": index,
            "digits": ds.to_dict(),
        }

    def more(self) -> dict[str, Any]:
        if self.last_input is None:
            return {"ok": False, "error": "Nothing to re-evaluate", "error_code": "NO_INPUT"}
        previous, self.long_timeout = self.long_timeout, True
        try:
            return self.evaluate(self.last_input)
        finally:
            self.long_timeout = previous

    def _memory_op(self, add: bool) -> dict[str, Any]:
        if self.last_index is None:
            return {"ok": False, "error": "No result to store", "error_code": "NO_INPUT"}
        if add:
            self.evaluator.add_to_memory(self.last_index)
        else:
            self.evaluator.subtract_from_memory(self.last_index)
        if not self._wait(lambda: self.evaluator.memory_index_get() != 0):
            return {"ok": False, "error": ERROR_MESSAGES[TIMEOUT], "error_code": TIMEOUT}
        return self.memory_recall()

    def memory_add(self) -> dict[str, Any]:
        return self._memory_op(True)

    def memory_subtract(self) -> dict[str, Any]:
        return self._memory_op(False)

    def memory_recall(self) -> dict[str, Any]:
        index = self.evaluator.memory_index_get()
        if index == 0:
            return {"ok": False, "error": "Memory is empty", "error_code": "NO_MEMORY"}
        listener = self._request(index)
        if listener.status != "evaluated":
            code = listener.error_code or TIMEOUT
            return {"ok": False, "error": ERROR_MESSAGES.get(code, code), "error_code": code}
        try:
            ds, exact = self._display(index, listener)
        except CalculatorError as e:
            return {"ok": False, "error": e.message, "error_code": e.code}
        return {"ok": True, "result": format_display(ds, exact), "exact": exact, "index": index}

    def history(self) -> list[dict[str, Any]]:
        ev = self.evaluator
        return [
            {"index": i, "expression": ev.expr_as_string(i)}
            for i in ev.stored_indices_get()
            if i > 0
        ]

    def clear(self) -> None:
        self.evaluator.clear_everything()
        self.last_index = None

    def close(self) -> None:
        self.evaluator.wait_for_writes()
        self.evaluator.close()


def print_result_pretty(res: dict[str, Any], output_format: str = "human", show_index: bool = False) -> None:
    """Print result in specified format.

    Args:
        res: Result dictionary
        output_format: "json" for JSON output, "human" for human-readable
        show_index: Prefix the result with its history reference
    """
    if output_format == "json":
        print(json.dumps(res, ensure_ascii=False))
        return
    if not res.get("ok"):
        print("Error:", res.get("error"))
        return
    if show_index and "index" in res:
        print(f"@{res['index']} = {res['result']}")
    else:
        print(res["result"])


def print_history(entries: list[dict[str, Any]], output_format: str = "human") -> None:
    if output_format == "json":
        print(json.dumps(entries, ensure_ascii=False))
        return
    if not entries:
        print("History is empty.")
    for entry in entries:
        print(f"@{entry['index']}: {entry['expression']}")


def print_help_text() -> None:
    """Print help text for REPL commands."""
    lines = [
        f"exactcalc version {VERSION}",
        "",
        "Type an expression to evaluate it exactly, e.g. 1/3, sqrt(2)^2, sin(pi/6), 50+10%.",
        "Functions: sqrt sin cos tan asin acos atan ln log exp; constants: pi e; suffixes: ! %",
        "Refer to an earlier result with @N, where N is shown next to each result.",
        "",
        "Commands:",
    ]
    for name, description in REPL_COMMANDS.items():
        lines.append(f"  {name:<10}{description}")
    print("\n".join(lines))


def repl_loop(session: CalculatorSession, output_format: str = "human") -> None:
    """Interactive REPL loop with graceful interrupt handling."""
    try:
        import readline  # noqa: F401
    except ImportError:
        pass

    print("exactcalc: type 'help' for commands, 'quit' to exit.")
    while True:
        try:
            raw = input(">>> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye.")
            break
        if not raw:
            continue
        command = raw.lower()
        if command in ("quit", "exit"):
            print("Goodbye.")
            break
        try:
            if command == "help":
                print_help_text()
            elif command == "history":
                print_history(session.history(), output_format)
            elif command == "clear":
                session.clear()
                print("History and memory cleared.")
            elif command in ("degrees", "radians"):
                session.evaluator.set_degree_mode(command == "degrees")
                print(f"Angles in {command}.")
            elif command == "more":
                print_result_pretty(session.more(), output_format, show_index=True)
            elif command == "m+":
                print_result_pretty(session.memory_add(), output_format)
            elif command == "m-":
                print_result_pretty(session.memory_subtract(), output_format)
            elif command == "mr":
                print_result_pretty(session.memory_recall(), output_format)
            else:
                print_result_pretty(session.evaluate(raw), output_format, show_index=True)
        except KeyboardInterrupt:
            session.evaluator.cancel_all(False)
            session.dispatcher.run_pending()
            print("\n[Cancelled]")


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("must be a non-negative integer")
    return number


def main_entry(argv: list[str] | None = None) -> int:
    """
    Main entry point for the exactcalc CLI.

    Args:
        argv: Optional command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = argparse.ArgumentParser(prog="exactcalc")
    parser.add_argument(
        "-e",
        "--eval",
        type=str,
        help="Evaluate one expression and exit (non-interactive)",
        dest="eval_expr",
    )
    parser.add_argument(
        "--format",
        type=str,
        choices=["json", "human"],
        default="human",
        help="Output format: json (machine-readable) or human (human-readable)",
    )
    parser.add_argument(
        "-d",
        "--digits",
        type=_non_negative_int,
        help="Show this many digits after the decimal point",
    )
    parser.add_argument(
        "--degrees",
        action="store_true",
        help="Evaluate trigonometric functions in degrees",
    )
    parser.add_argument(
        "--radians",
        action="store_true",
        help="Evaluate trigonometric functions in radians",
    )
    parser.add_argument(
        "--long-timeout",
        action="store_true",
        help="Allow long-running evaluations",
    )
    parser.add_argument("--history", action="store_true", help="Print history and exit")
    parser.add_argument(
        "--clear-history", action="store_true", help="Erase history and memory, then exit"
    )
    parser.add_argument("--data-dir", type=str, help="Directory for history and preferences")
    parser.add_argument(
        "-v", "--version", action="store_true", help="Show program version"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: EXACTCALC_LOG_LEVEL or WARNING)",
    )
    parser.add_argument("--log-file", type=str, help="Write logs to file")
    args = parser.parse_args(argv)

    if args.version:
        print(VERSION)
        return 0

    setup_logging(level=args.log_level, log_file=args.log_file)

    degree_mode = None
    if args.degrees:
        degree_mode = True
    elif args.radians:
        degree_mode = False

    session = CalculatorSession(
        data_dir=Path(args.data_dir) if args.data_dir else None,
        digits=args.digits,
        long_timeout=args.long_timeout,
        degree_mode=degree_mode,
        output_format=args.format,
    )
    try:
        if args.clear_history:
            session.clear()
            return 0
        if args.history:
            print_history(session.history(), args.format)
            return 0
        if args.eval_expr is not None:
            expr = args.eval_expr.strip()
            # Remove ">>>" prompt if present
            if expr.startswith(">>>"):
                expr = expr[3:].strip()
            res = session.evaluate(expr)
            print_result_pretty(res, output_format=args.format)
            return 0 if res.get("ok") else 1
        repl_loop(session, output_format=args.format)
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    """Allow running the CLI module directly with python -m exactcalc_pkg.cli"""
    sys.exit(main_entry())
