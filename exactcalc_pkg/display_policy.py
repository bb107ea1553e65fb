"""Pure functions deciding how many digits of a result to compute and show.

All positions are either indices into a cached decimal string (as produced by
``RealValue.to_string_truncated``) or offsets relative to its decimal point,
where offset 1 is the tenths digit and offset -1 the tens digit.
"""

from __future__ import annotations

import math
import sys

from .config import INIT_PREC, QUICK_MAX_RESULT_BITS

# Returned by msd_index_of when the digits do not prove the value is nonzero
INVALID_MSD = sys.maxsize

# lsd_offset results: no finite lsd (or unknown), and a value that is exactly zero
LSD_UNKNOWN = sys.maxsize
LSD_ZERO = -sys.maxsize - 1

# Characters charged for an exponent when deciding against scientific notation
EXP_COST = 3

# Longest run of zeroes shown instead of switching to scientific notation
MAX_LEADING_ZEROES = 6
MAX_TRAILING_ZEROES = 6

SHORT_TARGET_LENGTH = 8
ELLIPSIS = "…"
SHORT_UNCERTAIN_ZERO = "0.00000" + ELLIPSIS


class CharMetrics:
    """Width budget of the result display, measured in digit widths.

    Implementations must be callable from background threads.
    """

    def max_chars(self) -> int:
        raise NotImplementedError

    def separator_chars(self, s: str, length: int) -> float:
        """Extra digit widths needed to add separators to the whole number s[:length]."""
        return 0.0

    def decimal_credit(self) -> float:
        """Fraction of a digit width saved when no decimal point is shown."""
        return 0.0

    def no_ellipsis_credit(self) -> float:
        """Fraction of a digit width saved when no ellipsis is shown."""
        return 0.0


class DummyCharMetrics(CharMetrics):
    """Metrics used when only short representations are wanted."""

    def max_chars(self) -> int:
        return SHORT_TARGET_LENGTH + 10


class TerminalCharMetrics(CharMetrics):
    """A fixed-width line, optionally with thousands separators in the whole part."""

    def __init__(self, width: int, separators: bool = False):
        self.width = width
        self.separators = separators

    def max_chars(self) -> int:
        return self.width

    def separator_chars(self, s: str, length: int) -> float:
        if not self.separators:
            return 0.0
        digits = sum(1 for c in s[:length] if c.isdigit())
        return float(max(digits - 1, 0) // 3)


def msd_index_of(s: str) -> int:
    """Index of the most significant digit of s, or INVALID_MSD.

    A lone trailing "1" is not enough: with an error below one ulp the value
    could still be zero.
    """
    for i, c in enumerate(s):
        if c not in "-.0":
            if i < len(s) - 1 or c != "1":
                return i
            return INVALID_MSD
    return INVALID_MSD


def lsd_offset(value, cache: str, dec_index: int) -> int:
    """Offset of the rightmost nonzero digit relative to the decimal point.

    Returns LSD_ZERO for zero and LSD_UNKNOWN when the expansion does not
    terminate or cannot be determined.
    """
    if value.definitely_zero():
        return LSD_ZERO
    required = value.digits_required()
    if required is None:
        return LSD_UNKNOWN
    if required == 0:
        # An integer: count trailing zeroes of the whole part
        i = -1
        while dec_index + i > 0 and cache[dec_index + i] == "0":
            i -= 1
        return i
    return required


def preferred_prec(cache: str, msd: int, last_digit_offset: int, cm: CharMetrics) -> int:
    """Return the precision offset at which to display the result initially.

    -1 means an integer shown without a decimal point. Otherwise the offset
    either shows an exact result in full or keeps the msd at the left edge,
    which amounts to scientific notation for long results.
    """
    line_length = cm.max_chars()
    whole_size = cache.index(".")
    raw_sep_chars = cm.separator_chars(cache, whole_size)
    raw_sep_chars_no_decimal = raw_sep_chars - cm.no_ellipsis_credit()
    raw_sep_chars_with_decimal = raw_sep_chars_no_decimal - cm.decimal_credit()
    sep_chars_no_decimal = math.ceil(max(raw_sep_chars_no_decimal, 0.0))
    sep_chars_with_decimal = math.ceil(max(raw_sep_chars_with_decimal, 0.0))
    negative = 1 if cache[0] == "-" else 0
    if last_digit_offset == 0:
        last_digit_offset = -1
    if last_digit_offset != LSD_UNKNOWN:
        if whole_size <= line_length - sep_chars_no_decimal and last_digit_offset <= 0:
            return -1
        if (
            last_digit_offset >= 0
            and whole_size + last_digit_offset + 1 <= line_length - sep_chars_with_decimal
        ):
            return last_digit_offset
    if whole_size < msd <= whole_size + EXP_COST + 1:
        # A few leading zeroes are cheaper than an exponent
        msd = whole_size - 1
    if msd > QUICK_MAX_RESULT_BITS:
        # Probably zero: show "0.000..." rather than a huge negative exponent
        return line_length - 2
    result = msd - whole_size + line_length - negative - 1
    if whole_size <= line_length - sep_chars_no_decimal:
        if whole_size < line_length - sep_chars_with_decimal:
            result -= sep_chars_with_decimal
        else:
            result -= sep_chars_no_decimal
    return result


def add_commas(s: str, begin: int, end: int) -> str:
    """Insert thousands separators into the whole number s[begin:end]."""
    current = begin
    while current < end and s[current] in "- ":
        current += 1
    result = [s[begin:current]]
    while current < end:
        result.append(s[current])
        current += 1
        if (end - current) % 3 == 0 and end != current:
            result.append(",")
    return "".join(result)


def short_string(cache: str, msd_index: int, lsd_offset_value: int) -> str:
    """Return a representation of at most about SHORT_TARGET_LENGTH characters.

    Used where a result is abbreviated inside another expression.
    """
    dot_index = cache.index(".")
    negative = 1 if cache[0] == "-" else 0
    negative_sign = "-" if negative else ""
    lsd = lsd_offset_value
    if msd_index >= len(cache) - SHORT_TARGET_LENGTH:
        msd_index = INVALID_MSD
    if msd_index == INVALID_MSD:
        return "0" if lsd < INIT_PREC else SHORT_UNCERTAIN_ZERO
    if (
        lsd < -1
        and dot_index - msd_index + negative <= SHORT_TARGET_LENGTH
        and lsd >= -MAX_TRAILING_ZEROES - 1
    ):
        # Whole number that fits
        lsd = -1
    if msd_index > dot_index:
        if msd_index <= dot_index + EXP_COST + 1:
            msd_index = dot_index - 1
        elif lsd <= SHORT_TARGET_LENGTH - negative - 2 and lsd <= MAX_LEADING_ZEROES + 1:
            # Fraction that fits entirely
            msd_index = dot_index - 1
    exponent = dot_index - msd_index
    if exponent > 0:
        exponent -= 1
    if lsd != LSD_UNKNOWN:
        lsd_index = dot_index + lsd
        total_digits = lsd_index - msd_index + negative + 1
        if total_digits <= SHORT_TARGET_LENGTH and dot_index > msd_index and lsd >= -1:
            whole_with_commas = add_commas(cache, msd_index, dot_index)
            return negative_sign + whole_with_commas + cache[dot_index : lsd_index + 1]
        if total_digits <= SHORT_TARGET_LENGTH - 3:
            return (
                f"{negative_sign}{cache[msd_index]}."
                f"{cache[msd_index + 1 : lsd_index + 1]}E{exponent}"
            )
    if msd_index < dot_index < msd_index + SHORT_TARGET_LENGTH - negative - 1:
        whole_with_commas = add_commas(cache, msd_index, dot_index)
        return (
            negative_sign
            + whole_with_commas
            + cache[dot_index : msd_index + SHORT_TARGET_LENGTH - negative - 1]
            + ELLIPSIS
        )
    return (
        f"{negative_sign}{cache[msd_index]}."
        f"{cache[msd_index + 1 : msd_index + SHORT_TARGET_LENGTH - negative - 4]}"
        f"{ELLIPSIS}E{exponent}"
    )


def unflip_zeroes(old_digs: str, old_prec_offset: int, new_digs: str, new_prec_offset: int) -> str:
    """Undo a trailing 9s to 0s flip between two successive truncations.

    Results are accurate to strictly less than one ulp, so when the old string
    ended in 9s and the new digits in the same positions are 0s, appending 9s
    to the old string is still correct. Any other change to previously
    computed digits is a bug.
    """
    if not old_digs.endswith("9"):
        return new_digs
    prec_diff = new_prec_offset - old_prec_offset
    old_last_in_new = len(new_digs) - 1 - prec_diff
    if new_digs[old_last_in_new] != "0":
        return new_digs
    if new_digs[len(new_digs) - prec_diff :] != "0" * prec_diff:
        raise AssertionError("New approximation invalidates old one!")
    return old_digs + "9" * prec_diff
