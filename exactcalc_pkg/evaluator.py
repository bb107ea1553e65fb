"""Asynchronous, precision-adaptive evaluation of calculator expressions.

The Evaluator owns a table of expression records indexed by integers. Index
MAIN_INDEX is the expression being edited; HISTORY_MAIN_INDEX is a read-only
snapshot of it; every other index refers to an immutable expression kept in
the ExpressionStore.

Evaluation runs on a thread pool. Everything else, including every listener
notification, happens on the thread that drives the MainThreadDispatcher.
Background tasks communicate with it only by posting completions to the
dispatcher and by publishing values into a record's write-once cell.

Two kinds of task exist. An initial task computes the value of an
expression and a first decimal approximation of it. A refinement task
computes a longer approximation of an already known value. Each record has
at most one task at a time.
"""

from __future__ import annotations

import heapq
import itertools
import json
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from . import config
from .creal import CancellationToken, cancellation_scope
from .display_policy import (
    INVALID_MSD,
    CharMetrics,
    DummyCharMetrics,
    lsd_offset,
    msd_index_of,
    preferred_prec,
    short_string,
    unflip_zeroes,
)
from .expression import (
    TEN_POW,
    CalculatorExpr,
    ExprResolver,
    Operator,
    is_binary,
    is_trig_function,
)
from .expression_store import ExpressionRow, ExpressionStore
from .logging_config import get_logger
from .preferences import Preferences
from .real_value import RealValue
from .types import (
    TIMEOUT,
    AbortedError,
    CalculatorError,
    DisplayString,
    DomainError,
    InitialResult,
    PrecisionOverflowError,
    RefinementResult,
)

logger = get_logger("evaluator")

MAIN_INDEX = 0
HISTORY_MAIN_INDEX = -1

ERRONEOUS_RESULT = "ERR"

# Error code for failures that are bugs rather than properties of the input
EVAL_ERROR = "EVAL_ERROR"


class WriteOnceCell:
    """A value that can be set once from any thread; the first writer wins."""

    def __init__(self, value: Optional[RealValue] = None) -> None:
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> Optional[RealValue]:
        return self._value

    def put_if_absent(self, value: RealValue) -> RealValue:
        """Store value unless one is already present; return the stored value."""
        with self._lock:
            if self._value is None:
                self._value = value
            return self._value


class _Scheduled:
    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False


class MainThreadDispatcher:
    """A queue of callbacks run by whichever thread calls run_pending or run_until.

    Any thread may post. Callbacks run only on the draining thread, which
    plays the role of the orchestrating thread.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: list[tuple[float, int, _Scheduled]] = []
        self._seq = itertools.count()

    def post(self, callback: Callable[[], None]) -> _Scheduled:
        return self.post_delayed(callback, 0.0)

    def post_delayed(self, callback: Callable[[], None], delay: float) -> _Scheduled:
        """Run callback once delay seconds have passed; returns a handle for remove()."""
        item = _Scheduled(callback)
        with self._cond:
            heapq.heappush(self._queue, (time.monotonic() + delay, next(self._seq), item))
            self._cond.notify_all()
        return item

    def remove(self, item: Optional[_Scheduled]) -> None:
        if item is not None:
            item.cancelled = True

    def _next_due(self) -> Optional[_Scheduled]:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)
        if self._queue and self._queue[0][0] <= time.monotonic():
            return heapq.heappop(self._queue)[2]
        return None

    def run_pending(self) -> int:
        """Run every callback that is due. Returns how many ran."""
        ran = 0
        while True:
            with self._cond:
                item = self._next_due()
            if item is None:
                return ran
            item.cancelled = True
            item.callback()
            ran += 1

    def run_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> bool:
        """Run callbacks as they become due until predicate() holds.

        Returns False if timeout seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.run_pending()
            if predicate():
                return True
            with self._cond:
                now = time.monotonic()
                if deadline is not None and now >= deadline:
                    return False
                wait = None
                if self._queue:
                    wait = max(0.0, self._queue[0][0] - now)
                if deadline is not None:
                    wait = deadline - now if wait is None else min(wait, deadline - now)
                if wait is None or wait > 0:
                    self._cond.wait(wait)


class EvaluationListener:
    """Receives the outcome of evaluation requests, on the orchestrating thread."""

    def on_evaluate(
        self,
        index: int,
        init_prec_offset: int,
        msd_index: int,
        lsd_offset: int,
        truncated_whole_part: str,
    ) -> None:
        """A result is available.

        Args:
            index: Expression index
            init_prec_offset: Suggested number of digits right of the point to show
            msd_index: Index of the most significant digit in the cached string
            lsd_offset: Offset of the last nonzero digit, see display_policy
            truncated_whole_part: Digits left of the decimal point
        """

    def on_error(self, index: int, error_code: str) -> None:
        """Evaluation failed with the given error code."""

    def on_cancelled(self, index: int) -> None:
        """Evaluation was cancelled or timed out."""

    def on_reevaluate(self, index: int) -> None:
        """More digits are available."""


class EvaluatorCallback:
    """One-shot notifications for the user interface."""

    def on_memory_state_changed(self) -> None:
        pass

    def show_timeout_message(self, long_timeout: bool) -> None:
        pass

    def show_cancelled_message(self) -> None:
        pass


class ExprInfo:
    """Everything known about the expression at one index."""

    def __init__(self, expr: CalculatorExpr, degree_mode: bool) -> None:
        self.expr = expr
        self.degree_mode = degree_mode
        self.evaluator: Optional[_Task] = None
        self.value = WriteOnceCell()
        self.result_string: Optional[str] = None
        # Digits right of the decimal point in result_string
        self.result_string_offset = 0
        # Precision requested of the running refinement task, if any
        self.result_string_offset_req = 0
        self.msd_index = INVALID_MSD
        self.long_timeout = False
        self.timestamp = 0.0


class _Task:
    """A background computation delivering its outcome on the orchestrating thread."""

    def __init__(self, evaluator: Evaluator, index: int) -> None:
        self._evaluator = evaluator
        self.index = index
        self.token = CancellationToken()
        self.finished = False
        self._future: Optional[Future] = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def execute(self, *args) -> None:
        self.on_pre_execute()
        dispatcher = self._evaluator.dispatcher
        self._future = self._evaluator.executor.submit(self._run, *args)
        self._future.add_done_callback(lambda f: dispatcher.post(lambda: self._deliver(f)))

    def _run(self, *args):
        with cancellation_scope(self.token):
            return self.do_in_background(*args)

    def _deliver(self, future: Future) -> None:
        self.finished = True
        # Invariant violations in the background resurface here
        result = future.result()
        if self.cancelled:
            self.on_cancelled(result)
        else:
            self.on_post_execute(result)

    def cancel(self) -> bool:
        """Request cooperative cancellation. False if already finished or cancelled."""
        if self.finished or self.cancelled:
            return False
        self.token.cancel()
        return True

    def on_pre_execute(self) -> None:
        pass

    def do_in_background(self, *args):
        raise NotImplementedError

    def on_post_execute(self, result) -> None:
        pass

    def on_cancelled(self, result) -> None:
        pass


class _InitialTask(_Task):
    """Computes a value and its first decimal approximation."""

    def __init__(
        self,
        evaluator: Evaluator,
        index: int,
        listener: Optional[EvaluationListener],
        char_metrics: CharMetrics,
        degree_mode: bool,
        required: bool,
    ) -> None:
        super().__init__(evaluator, index)
        self.listener = listener
        self.char_metrics = char_metrics
        self.degree_mode = degree_mode
        self.required = required
        self.quiet = not required or index != MAIN_INDEX
        self.info = evaluator._exprs[index]
        if self.info.evaluator is not None:
            raise AssertionError("Evaluation already in progress!")
        # Captured now: after a cancellation the record gets a fresh expression and cell
        self.expr = self.info.expr
        self.cell = self.info.value
        self._timeout_item = None

    def suppress_cancel_message(self) -> None:
        self.quiet = True

    def _handle_timeout(self) -> None:
        if self.cancel():
            logger.info(f"Evaluation of expression {self.index} timed out")
            self.info.evaluator = None
            if self.required and self.index == MAIN_INDEX:
                ev = self._evaluator
                ev._main_expr.expr = ev._main_expr.expr.clone()
                self.suppress_cancel_message()
                ev._display_timeout_message(self.info.long_timeout)

    def on_pre_execute(self) -> None:
        if self.required:
            timeout = self._evaluator._timeout_get(self.info.long_timeout)
        else:
            timeout = config.QUICK_TIMEOUT
        if self.index != MAIN_INDEX:
            timeout = config.NON_MAIN_TIMEOUT
        self._timeout_item = self._evaluator.dispatcher.post_delayed(self._handle_timeout, timeout)

    def _is_too_big(self, res: RealValue) -> bool:
        if self.required:
            max_bits = self._evaluator._max_result_bits_get(self.info.long_timeout)
        else:
            max_bits = config.QUICK_MAX_RESULT_BITS
        return res.approx_whole_number_bits_greater_than(max_bits)

    def do_in_background(self) -> InitialResult:
        try:
            res = self.cell.get()
            if res is None:
                try:
                    res = self.expr.eval(self.degree_mode, self._evaluator)
                except RecursionError:
                    return InitialResult(error_code=TIMEOUT)
                if self.cancelled:
                    raise AbortedError()
                res = self.cell.put_if_absent(res)
            if self._is_too_big(res):
                return InitialResult(error_code=TIMEOUT)
            prec_offset = config.INIT_PREC
            init_result = res.to_string_truncated(prec_offset)
            msd = msd_index_of(init_result)
            if msd == INVALID_MSD:
                leading_zero_bits = res.leading_binary_zeroes()
                if leading_zero_bits < config.QUICK_MAX_RESULT_BITS:
                    # Enough decimal digits to cover the leading zero bits, plus a margin
                    prec_offset = 30 + math.ceil(math.log(2) / math.log(10) * leading_zero_bits)
                    init_result = res.to_string_truncated(prec_offset)
                    msd = msd_index_of(init_result)
                    if msd == INVALID_MSD:
                        raise AssertionError("Impossible zero result")
                else:
                    # Might be exactly zero; stop at a fixed depth
                    prec_offset = config.MAX_MSD_PREC_OFFSET
                    init_result = res.to_string_truncated(prec_offset)
                    msd = msd_index_of(init_result)
            lsd = lsd_offset(res, init_result, init_result.index("."))
            init_display_offset = preferred_prec(init_result, msd, lsd, self.char_metrics)
            new_prec_offset = init_display_offset + config.EXTRA_DIGITS
            if new_prec_offset > prec_offset:
                prec_offset = new_prec_offset
                init_result = res.to_string_truncated(prec_offset)
            return InitialResult(
                value=res,
                result_string=init_result,
                result_string_offset=prec_offset,
                init_display_offset=init_display_offset,
            )
        except CalculatorError as e:
            return InitialResult(error_code=e.code)
        except RecursionError:
            return InitialResult(error_code=TIMEOUT)
        except ZeroDivisionError:
            return InitialResult(error_code="DIVIDE_BY_ZERO")
        except ArithmeticError:
            return InitialResult(error_code=DomainError.default_code)
        except AssertionError:
            raise
        except Exception:
            logger.exception(f"Unexpected error evaluating expression {self.index}")
            return InitialResult(error_code=EVAL_ERROR)

    def on_post_execute(self, result: InitialResult) -> None:
        ev = self._evaluator
        info = self.info
        info.evaluator = None
        ev.dispatcher.remove(self._timeout_item)
        if result.is_error:
            if self.index != MAIN_INDEX:
                logger.warning(
                    f"Evaluation of stored expression {self.index} failed: {result.error_code}"
                )
            if result.error_code == TIMEOUT:
                if self.required and self.index == MAIN_INDEX:
                    ev._display_timeout_message(info.long_timeout)
                if self.listener is not None:
                    self.listener.on_cancelled(self.index)
            else:
                if self.required:
                    info.result_string = ERRONEOUS_RESULT
                if self.listener is not None:
                    self.listener.on_error(self.index, result.error_code)
            return
        info.result_string = result.result_string
        info.result_string_offset = result.result_string_offset
        dot_index = info.result_string.index(".")
        truncated_whole_part = info.result_string[:dot_index]
        init_prec_offset = result.init_display_offset
        info.msd_index = msd_index_of(info.result_string)
        least_dig_offset = lsd_offset(result.value, info.result_string, dot_index)
        new_init_prec_offset = preferred_prec(
            info.result_string, info.msd_index, least_dig_offset, self.char_metrics
        )
        if new_init_prec_offset < init_prec_offset:
            init_prec_offset = new_init_prec_offset
        if self.listener is not None:
            self.listener.on_evaluate(
                self.index, init_prec_offset, info.msd_index, least_dig_offset, truncated_whole_part
            )

    def on_cancelled(self, result) -> None:
        self._evaluator.dispatcher.remove(self._timeout_item)
        logger.debug(f"Evaluation of expression {self.index} cancelled")
        if not self.quiet:
            self._evaluator._display_cancelled_message()
        if self.listener is not None:
            self.listener.on_cancelled(self.index)


class _RefinementTask(_Task):
    """Computes a longer truncation of an already known value."""

    def __init__(self, evaluator: Evaluator, index: int, listener: EvaluationListener) -> None:
        super().__init__(evaluator, index)
        self.listener = listener
        self.info = evaluator._exprs[index]

    def do_in_background(self, prec_offset: int) -> Optional[RefinementResult]:
        try:
            return RefinementResult(
                self.info.value.get().to_string_truncated(prec_offset), prec_offset
            )
        except (DomainError, ArithmeticError, PrecisionOverflowError, AbortedError, RecursionError):
            return None

    def on_post_execute(self, result: Optional[RefinementResult]) -> None:
        info = self.info
        if result is None:
            logger.warning(f"Refinement of expression {self.index} failed")
            info.result_string = ERRONEOUS_RESULT
            self.listener.on_error(self.index, DomainError.default_code)
        else:
            if info.result_string is None:
                info.result_string = result.result_string
            else:
                if result.result_string_offset < info.result_string_offset:
                    raise AssertionError("Unexpected refinement timing")
                info.result_string = unflip_zeroes(
                    info.result_string,
                    info.result_string_offset,
                    result.result_string,
                    result.result_string_offset,
                )
            info.result_string_offset = result.result_string_offset
            self.listener.on_reevaluate(self.index)
        info.evaluator = None


class _SetMemoryWhenDoneListener(EvaluationListener):
    def __init__(self, evaluator: Evaluator, index: int, persist: bool) -> None:
        self._evaluator = evaluator
        self.index = index
        self.persist = persist

    def on_evaluate(self, index, init_prec_offset, msd_index, lsd_offset, truncated_whole_part):
        ev = self._evaluator
        if ev._memory_index != 0:
            raise AssertionError("Overwriting nonzero memory index")
        if self.persist:
            ev._set_memory_index(self.index)
        else:
            ev._memory_index = self.index

    def on_reevaluate(self, index: int) -> None:
        raise AssertionError("unexpected callback")


class Evaluator(ExprResolver):
    """Owns expression records and schedules their evaluation.

    Every public method must be called on the thread that drains
    ``dispatcher``.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        dispatcher: Optional[MainThreadDispatcher] = None,
        callback: Optional[EvaluatorCallback] = None,
        store: Optional[ExpressionStore] = None,
        preferences: Optional[Preferences] = None,
    ) -> None:
        data_dir = Path(data_dir) if data_dir is not None else config.DATA_DIR
        self.dispatcher = dispatcher or MainThreadDispatcher()
        self.executor = ThreadPoolExecutor(
            max_workers=config.MAX_BACKGROUND_TASKS, thread_name_prefix="exactcalc-eval"
        )
        self._callback = callback
        self._store = store or ExpressionStore(data_dir / config.HISTORY_FILE_NAME)
        self._prefs = preferences or Preferences(data_dir / config.PREFERENCES_FILE_NAME)
        self._exprs: dict[int, ExprInfo] = {}
        self._exprs_lock = threading.Lock()
        self._dummy_char_metrics = DummyCharMetrics()
        self._changed_value = False
        self._has_trig_funcs = False
        self._memory_index = 0
        self._set_main_expr(ExprInfo(CalculatorExpr(), self._prefs.degree_mode))
        memory_index = self._prefs.memory_index
        if memory_index not in (0, -1):
            try:
                self._set_memory_index_when_evaluated(memory_index, False)
            except KeyError:
                logger.warning(f"Stored memory index {memory_index} not found, clearing memory")
                self._set_memory_index(0)

    def _set_main_expr(self, info: ExprInfo) -> None:
        self._main_expr = info
        self._exprs[MAIN_INDEX] = info

    @property
    def main_expr(self) -> CalculatorExpr:
        return self._main_expr.expr

    @property
    def degree_mode(self) -> bool:
        return self._main_expr.degree_mode

    def min_index_get(self) -> int:
        return self._store.min_index

    def max_index_get(self) -> int:
        return self._store.max_index

    def stored_indices_get(self) -> list[int]:
        return self._store.indices()

    def set_callback(self, callback: EvaluatorCallback) -> None:
        self._callback = callback

    @staticmethod
    def _is_mutable_index(index: int) -> bool:
        return index in (MAIN_INDEX, HISTORY_MAIN_INDEX)

    def _display_cancelled_message(self) -> None:
        if self._callback is not None:
            self._callback.show_cancelled_message()

    def _display_timeout_message(self, long_timeout: bool) -> None:
        if self._callback is not None:
            self._callback.show_timeout_message(long_timeout)

    @staticmethod
    def _timeout_get(long_timeout: bool) -> float:
        return config.LONG_TIMEOUT if long_timeout else config.SHORT_TIMEOUT

    @staticmethod
    def _max_result_bits_get(long_timeout: bool) -> int:
        return config.LONG_MAX_RESULT_BITS if long_timeout else config.SHORT_MAX_RESULT_BITS

    def set_long_timeout(self) -> None:
        self._main_expr.long_timeout = True

    # Precision management

    def _ensure_cache_prec(self, index: int, prec_offset: int, listener: EvaluationListener) -> None:
        info = self._exprs[index]
        if (
            info.result_string is not None and info.result_string_offset >= prec_offset
        ) or info.result_string_offset_req >= prec_offset:
            return
        if info.value.get() is None:
            return
        if isinstance(info.evaluator, _InitialTask):
            # Its listener hears about the first digits; refine after that
            return
        if info.evaluator is not None:
            info.evaluator.cancel()
            info.evaluator = None
        task = _RefinementTask(self, index, listener)
        info.evaluator = task
        info.result_string_offset_req = prec_offset + config.PRECOMPUTE_DIGITS
        if info.result_string is not None:
            info.result_string_offset_req += info.result_string_offset_req // config.PRECOMPUTE_DIVISOR
        task.execute(info.result_string_offset_req)

    def _msd_index_get(self, index: int) -> int:
        info = self._exprs[index]
        if info.msd_index != INVALID_MSD:
            # A refinement may have turned a leading 0.999... into 1.000...
            if info.result_string[info.msd_index] == "0":
                info.msd_index += 1
            return info.msd_index
        value = info.value.get()
        if value is not None and value.definitely_zero():
            return INVALID_MSD
        if info.result_string is not None:
            info.msd_index = msd_index_of(info.result_string)
        return info.msd_index

    def string_get(
        self,
        index: int,
        prec_offset: int,
        max_prec_offset: int,
        max_digs: int,
        listener: EvaluationListener,
    ) -> DisplayString:
        """Return up to max_digs characters of the result ending prec_offset digits right of the point.

        prec_offset is clamped so that a few digits are always shown and at
        most max_prec_offset digits follow the point. Positions not computed
        yet are blank, and computing them is scheduled; listener.on_reevaluate
        fires when they are available.
        """
        info = self._exprs[index]
        current = prec_offset
        if info.result_string is None:
            self._ensure_cache_prec(index, current + config.EXTRA_DIGITS, listener)
            return DisplayString(" ", current)
        new_prec = current + config.EXTRA_DIGITS + len(info.result_string) // config.EXTRA_DIVISOR
        self._ensure_cache_prec(index, new_prec, listener)
        result_string = info.result_string
        length = len(result_string)
        negative = result_string[0] == "-"
        integral_digits = length - info.result_string_offset
        if negative:
            integral_digits -= 1
        min_prec_offset = min(config.MIN_DISPLAYED_DIGS - integral_digits, -1)
        current = min(max(current, min_prec_offset), max_prec_offset)
        extra_digs = info.result_string_offset - current
        deficit = 0
        if extra_digs < 0:
            extra_digs = 0
            deficit = min(current - info.result_string_offset, max_digs)
        end_index = length - extra_digs
        if end_index < 1:
            return DisplayString(" ", current, negative=negative)
        start_index = max(end_index + deficit - max_digs, 0)
        truncated = start_index > self._msd_index_get(index)
        text = result_string[start_index:end_index] + " " * deficit
        return DisplayString(text, current, truncated, negative)

    # Evaluation requests

    def _clear_main_cache(self) -> None:
        main = self._main_expr
        main.value = WriteOnceCell()
        main.result_string = None
        main.result_string_offset = 0
        main.result_string_offset_req = 0
        main.msd_index = INVALID_MSD

    def clear_main(self) -> None:
        self._main_expr.expr.clear()
        self._has_trig_funcs = False
        self._clear_main_cache()
        self._main_expr.long_timeout = False

    def clear_everything(self) -> None:
        """Forget the current expression, the memory register and all history."""
        degree_mode = self._main_expr.degree_mode
        self.cancel_all(True)
        self._set_memory_index(0)
        self._store.erase_all()
        with self._exprs_lock:
            self._exprs.clear()
        self._set_main_expr(ExprInfo(CalculatorExpr(), degree_mode))

    def _evaluate_result(
        self,
        index: int,
        listener: Optional[EvaluationListener],
        char_metrics: CharMetrics,
        required: bool,
    ) -> None:
        info = self._exprs[index]
        if index == MAIN_INDEX:
            self._clear_main_cache()
        task = _InitialTask(self, index, listener, char_metrics, info.degree_mode, required)
        info.evaluator = task
        task.execute()
        if index == MAIN_INDEX:
            self._changed_value = False

    def _notify_immediately(
        self,
        index: int,
        info: ExprInfo,
        listener: Optional[EvaluationListener],
        char_metrics: CharMetrics,
    ) -> None:
        dot_index = info.result_string.index(".")
        truncated_whole_part = info.result_string[:dot_index]
        least_dig_offset = lsd_offset(info.value.get(), info.result_string, dot_index)
        msd_index = self._msd_index_get(index)
        preferred_prec_offset = preferred_prec(
            info.result_string, msd_index, least_dig_offset, char_metrics
        )
        if listener is not None:
            listener.on_evaluate(
                index, preferred_prec_offset, msd_index, least_dig_offset, truncated_whole_part
            )

    def evaluate_and_notify(
        self,
        index: int,
        listener: Optional[EvaluationListener],
        char_metrics: CharMetrics,
    ) -> None:
        """Evaluate speculatively with a short timeout, without reporting timeouts."""
        if char_metrics.max_chars() == 0:
            return
        info = self._ensure_expr_is_cached(index)
        if (
            info.result_string is not None
            and info.result_string != ERRONEOUS_RESULT
            and not (index == MAIN_INDEX and self._changed_value)
        ):
            self._notify_immediately(index, info, listener, char_metrics)
            return
        if info.evaluator is not None:
            return
        self._evaluate_result(index, listener, char_metrics, False)

    def require_result(
        self,
        index: int,
        listener: Optional[EvaluationListener],
        char_metrics: CharMetrics,
    ) -> None:
        """Evaluate as an explicit user request, reporting errors and timeouts."""
        if char_metrics.max_chars() == 0:
            raise AssertionError("require_result called too early")
        info = self._ensure_expr_is_cached(index)
        if info.result_string is None or (index == MAIN_INDEX and self._changed_value):
            if index == HISTORY_MAIN_INDEX:
                # The snapshot was taken before its value was known
                if listener is not None:
                    listener.on_cancelled(index)
            elif isinstance(info.evaluator, _InitialTask) and info.evaluator.required:
                pass
            else:
                self._cancel(info, True)
                self._evaluate_result(index, listener, char_metrics, True)
        elif info.result_string == ERRONEOUS_RESULT:
            self._cancel(info, True)
            self._evaluate_result(index, listener, char_metrics, True)
        else:
            self._notify_immediately(index, info, listener, char_metrics)

    def has_result(self, index: int) -> bool:
        return self._ensure_expr_is_cached(index).result_string is not None

    def evaluation_in_progress(self, index: int) -> bool:
        info = self._exprs.get(index)
        return info is not None and info.evaluator is not None

    # Cancellation

    def _cancel(self, info: ExprInfo, quiet: bool) -> bool:
        if info.evaluator is None:
            return False
        if quiet and isinstance(info.evaluator, _InitialTask):
            info.evaluator.suppress_cancel_message()
        if info.value.get() is not None:
            info.evaluator.cancel()
            info.result_string_offset_req = info.result_string_offset
            info.evaluator = None
            return False
        info.evaluator.cancel()
        if info is self._main_expr:
            # The task may still be reading the old expression
            self._main_expr.expr = self._main_expr.expr.clone()
            self._changed_value = True
        info.evaluator = None
        return True

    def cancel(self, index: int, quiet: bool) -> bool:
        """Cancel evaluation of index. True if a value computation was abandoned."""
        info = self._exprs.get(index)
        return self._cancel(info, quiet) if info is not None else False

    def cancel_all(self, quiet: bool) -> None:
        for info in list(self._exprs.values()):
            self._cancel(info, quiet)

    def cancel_non_main(self) -> None:
        for info in list(self._exprs.values()):
            if info is not self._main_expr:
                self._cancel(info, True)

    # Saved state

    def save_state(self) -> bytes:
        """Serialize the current expression and its settings."""
        state = {
            "degree_mode": self._main_expr.degree_mode,
            "long_timeout": self._main_expr.long_timeout,
            "expr": self._main_expr.expr.to_list(),
        }
        return json.dumps(state, ensure_ascii=False).encode("utf-8")

    def restore_state(self, data: bytes) -> None:
        self._changed_value = True
        try:
            state = json.loads(data.decode("utf-8"))
            expr = CalculatorExpr.from_list(state["expr"])
            self._main_expr.degree_mode = bool(state["degree_mode"])
            self._main_expr.long_timeout = bool(state["long_timeout"])
            self._main_expr.expr = expr
            self._has_trig_funcs = expr.has_trig_funcs()
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to restore saved state: {e}")

    # Editing the current expression

    def append(self, key: str) -> bool:
        """Add a key to the current expression. False if it cannot be added there."""
        if key == TEN_POW:
            self._add_10pow()
            return True
        self._changed_value = self._changed_value or not is_binary(key)
        if self._main_expr.expr.add(key):
            if not self._has_trig_funcs:
                self._has_trig_funcs = is_trig_function(key)
            return True
        return False

    def append_text(self, text: str) -> None:
        """Add the keys spelled by text; leaves the expression unchanged on error."""
        expr = self._main_expr.expr.clone()
        expr.add_text(text)
        self._changed_value = True
        self._main_expr.expr = expr
        self._has_trig_funcs = expr.has_trig_funcs()

    def delete(self) -> None:
        self._changed_value = True
        self._main_expr.expr.delete()
        if self._main_expr.expr.is_empty:
            self._main_expr.long_timeout = False
        self._has_trig_funcs = self._main_expr.expr.has_trig_funcs()

    def set_degree_mode(self, degree_mode: bool) -> None:
        self._changed_value = True
        self._main_expr.degree_mode = degree_mode
        self._prefs.degree_mode = degree_mode

    def _add_10pow(self) -> None:
        ten = CalculatorExpr()
        ten.add("1")
        ten.add("0")
        self._changed_value = True
        self._main_expr.expr.append(ten)
        self._main_expr.expr.add("^")

    def touch(self) -> None:
        self._changed_value = True

    def has_trig_funcs(self) -> bool:
        return self._has_trig_funcs

    # Preserving and combining results

    def _copy(self, index: int, copy_value: bool) -> ExprInfo:
        from_info = self._exprs[index]
        info = ExprInfo(from_info.expr.clone(), from_info.degree_mode)
        while info.expr.has_trailing_binary():
            info.expr.delete()
        if copy_value:
            info.value = WriteOnceCell(from_info.value.get())
            info.result_string = from_info.result_string
            info.result_string_offset = from_info.result_string_offset
            info.result_string_offset_req = from_info.result_string_offset
            info.msd_index = from_info.msd_index
        info.long_timeout = from_info.long_timeout
        return info

    def _add_to_db(self, in_history: bool, info: ExprInfo) -> int:
        row = ExpressionRow(info.expr.to_bytes(), info.degree_mode, info.long_timeout)
        result_index = self._store.add_row(in_history, row)
        if result_index in self._exprs:
            raise AssertionError(f"result slot already occupied! Slot = {result_index}")
        if result_index == MAIN_INDEX:
            raise AssertionError("Should not store main expression")
        info.timestamp = row.timestamp
        with self._exprs_lock:
            self._exprs[result_index] = info
        return result_index

    def preserve(self, old_index: int, in_history: bool) -> int:
        """Store an evaluated copy of the expression at old_index; return the new index."""
        info = self._copy(old_index, True)
        if info.result_string is None or info.result_string == ERRONEOUS_RESULT:
            raise AssertionError("Preserving unevaluated expression")
        return self._add_to_db(in_history, info)

    def represerve(self) -> None:
        """Make sure the newest history entry is cached again after a restart."""
        self._ensure_expr_is_cached(self.max_index_get())

    def copy_main_to_history(self) -> None:
        self.cancel(HISTORY_MAIN_INDEX, True)
        self._exprs[HISTORY_MAIN_INDEX] = self._copy(MAIN_INDEX, True)

    def _collapsed_expr_get(self, index: int) -> Optional[CalculatorExpr]:
        real_index = self.preserve(index, False) if self._is_mutable_index(index) else index
        info = self._exprs[real_index]
        result_string = info.result_string
        if result_string is None or result_string == ERRONEOUS_RESULT:
            return None
        dot_index = result_string.index(".")
        least_dig_offset = lsd_offset(info.value.get(), result_string, dot_index)
        return info.expr.abbreviate(
            real_index,
            short_string(result_string, msd_index_of(result_string), least_dig_offset),
        )

    def collapse(self, index: int) -> None:
        """Replace the current expression by a reference to the result at index."""
        long_timeout = self._exprs[index].long_timeout
        abbreviated = self._collapsed_expr_get(index)
        if abbreviated is None:
            raise AssertionError("Collapsing unevaluated expression")
        self.clear_main()
        self._main_expr.expr.append(abbreviated)
        self._main_expr.long_timeout = long_timeout
        self._changed_value = True
        # Degree mode no longer affects the value
        self._has_trig_funcs = False

    def append_expr(self, index: int) -> None:
        """Append a reference to the evaluated expression at index."""
        info = self._ensure_expr_is_cached(index)
        self._changed_value = True
        self._main_expr.long_timeout = self._main_expr.long_timeout or info.long_timeout
        collapsed = self._collapsed_expr_get(index)
        if collapsed is not None:
            self._main_expr.expr.append(collapsed)

    def _generalized_sum(self, index1: int, index2: int, op: str) -> Optional[ExprInfo]:
        collapsed1 = self._collapsed_expr_get(index1)
        collapsed2 = self._collapsed_expr_get(index2)
        if collapsed1 is None or collapsed2 is None:
            return None
        result = CalculatorExpr()
        result.append(collapsed1)
        result.add(op)
        result.append(collapsed2)
        info = ExprInfo(result, False)
        info.long_timeout = self._exprs[index1].long_timeout or self._exprs[index2].long_timeout
        return info

    # Memory register

    def _set_memory_index(self, index: int) -> None:
        self._memory_index = index
        self._prefs.memory_index = index
        if self._callback is not None:
            self._callback.on_memory_state_changed()

    def _set_memory_index_when_evaluated(self, index: int, persist: bool) -> None:
        self.require_result(
            index, _SetMemoryWhenDoneListener(self, index, persist), self._dummy_char_metrics
        )

    def memory_index_get(self) -> int:
        return self._memory_index

    def copy_to_memory(self, index: int) -> None:
        self._set_memory_index(self.preserve(index, False) if self._is_mutable_index(index) else index)

    def _update_memory(self, index: int, op: str) -> None:
        if self._memory_index == 0:
            if op == "+":
                self.copy_to_memory(index)
                return
            collapsed = self._collapsed_expr_get(index)
            if collapsed is None:
                return
            negated = CalculatorExpr([Operator("-")])
            negated.append(collapsed)
            new_info = ExprInfo(negated, False)
            new_info.long_timeout = self._exprs[index].long_timeout
        else:
            new_info = self._generalized_sum(self._memory_index, index, op)
            if new_info is None:
                return
        new_index = self._add_to_db(False, new_info)
        # Invalidate while the new value is computed
        self._memory_index = 0
        self._set_memory_index_when_evaluated(new_index, True)

    def add_to_memory(self, index: int) -> None:
        self._update_memory(index, "+")

    def subtract_from_memory(self, index: int) -> None:
        self._update_memory(index, "-")

    # ExprResolver

    def _ensure_expr_is_cached(self, index: int) -> ExprInfo:
        info = self._exprs.get(index)
        if info is not None:
            return info
        if index == MAIN_INDEX:
            raise AssertionError("Main expression should be cached")
        row = self._store.get_row(index)
        info = ExprInfo(CalculatorExpr.from_bytes(row.expression), row.degree_mode)
        info.timestamp = row.timestamp
        info.long_timeout = row.long_timeout
        with self._exprs_lock:
            return self._exprs.setdefault(index, info)

    def expr_get(self, index: int) -> CalculatorExpr:
        return self._ensure_expr_is_cached(index).expr

    def degree_mode_get(self, index: int) -> bool:
        return self._ensure_expr_is_cached(index).degree_mode

    def result_get(self, index: int) -> Optional[RealValue]:
        return self._ensure_expr_is_cached(index).value.get()

    def put_result_if_absent(self, index: int, result: RealValue) -> RealValue:
        return self._exprs[index].value.put_if_absent(result)

    def timestamp_get(self, index: int) -> float:
        return self._ensure_expr_is_cached(index).timestamp

    # Diagnostics and teardown

    def expr_as_string(self, index: int) -> str:
        return str(self.expr_get(index))

    def history_as_string(self) -> str:
        lines = []
        for i in self.stored_indices_get():
            lines.append(f"{i}: {self.expr_as_string(i)}")
        lines.append(f"Memory index = {self.memory_index_get()}")
        return "\n".join(lines) + "\n"

    def wait_for_writes(self) -> None:
        self._store.wait_for_pending_writes()

    def close(self) -> None:
        """Cancel all work and release the expression store."""
        self.cancel_all(True)
        self.executor.shutdown(wait=False, cancel_futures=True)
        self._store.close()
