"""Durable storage for evaluated expressions.

Rows live in a JSON-lines file, one object per row, appended as rows are
added. Loading and writing happen on a single background worker so callers
never wait on disk I/O except when they need the loaded data for the first
time.

Expressions shown in history get positive indices counting up from 1.
Expressions that are kept only as operands of other expressions (memory,
collapsed results) get negative indices counting down from
MAXIMUM_MIN_INDEX - 1. Indices from MAXIMUM_MIN_INDEX to 0 are reserved for
in-memory records.
"""

from __future__ import annotations

import base64
import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import DATA_DIR, HISTORY_FILE_NAME
from .logging_config import get_logger

logger = get_logger("store")

# Negative indices above this are never persisted
MAXIMUM_MIN_INDEX = -10

_STORE_VERSION = 1

_MARK_KEY = "last_history_index"


@dataclass
class ExpressionRow:
    """A persisted expression with the settings it was evaluated under."""

    expression: bytes
    degree_mode: bool = False
    long_timeout: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self, index: int) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "v": _STORE_VERSION,
            "index": index,
            "expression": base64.b64encode(self.expression).decode("ascii"),
            "degree_mode": self.degree_mode,
            "long_timeout": self.long_timeout,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> tuple[int, ExpressionRow]:
        row = cls(
            expression=base64.b64decode(data["expression"]),
            degree_mode=bool(data.get("degree_mode", False)),
            long_timeout=bool(data.get("long_timeout", False)),
            timestamp=float(data.get("timestamp", 0.0)),
        )
        return int(data["index"]), row


class ExpressionStore:
    """Indexed, append-only expression rows backed by a JSON-lines file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else DATA_DIR / HISTORY_FILE_NAME
        self._rows: dict[int, ExpressionRow] = {}
        self._min_index = MAXIMUM_MIN_INDEX
        self._max_index = 0
        # Last indices ever assigned; these survive erase_all
        self._last_history_index = 0
        self._last_operand_index = MAXIMUM_MIN_INDEX
        self._lock = threading.Lock()
        self._loaded = threading.Event()
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="exactcalc-store"
        )
        self._executor.submit(self._load)

    def _load(self) -> None:
        try:
            if not self.path.exists():
                return
            with open(self.path, encoding="utf-8") as f:
                for line_number, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                        if _MARK_KEY in data:
                            self._last_history_index = int(data[_MARK_KEY])
                            self._last_operand_index = int(data["last_operand_index"])
                            continue
                        index, row = ExpressionRow.from_dict(data)
                    except (ValueError, KeyError, TypeError) as e:
                        logger.warning(f"Skipping bad history row {line_number}: {e}")
                        continue
                    self._rows[index] = row
                    if index > 0:
                        self._max_index = max(self._max_index, index)
                    elif index < MAXIMUM_MIN_INDEX:
                        self._min_index = min(self._min_index, index)
            self._last_history_index = max(self._last_history_index, self._max_index)
            self._last_operand_index = min(self._last_operand_index, self._min_index)
            logger.debug(f"Loaded {len(self._rows)} history rows from {self.path}")
        except OSError as e:
            logger.warning(f"Failed to load history: {e}, starting with empty history")
        finally:
            self._loaded.set()

    def _append(self, index: int, row: ExpressionRow) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(row.to_dict(index)) + "\n")
        except OSError as e:
            logger.warning(f"Failed to save history row {index}: {e}")

    def _truncate(self, last_history_index: int, last_operand_index: int) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write atomically (write to temp file then rename)
            temp_file = self.path.with_suffix(".tmp")
            mark = {_MARK_KEY: last_history_index, "last_operand_index": last_operand_index}
            temp_file.write_text(json.dumps(mark) + "\n", encoding="utf-8")
            temp_file.replace(self.path)
        except OSError as e:
            logger.warning(f"Failed to erase history: {e}")

    def wait_for_load(self) -> None:
        self._loaded.wait()

    def add_row(self, in_history: bool, row: ExpressionRow) -> int:
        """Store row and return its newly assigned index."""
        self.wait_for_load()
        with self._lock:
            if self._closed:
                raise RuntimeError("Expression store is closed")
            if in_history:
                self._last_history_index += 1
                index = self._max_index = self._last_history_index
            else:
                self._last_operand_index -= 1
                index = self._min_index = self._last_operand_index
            self._rows[index] = row
            self._executor.submit(self._append, index, row)
        return index

    def get_row(self, index: int) -> ExpressionRow:
        self.wait_for_load()
        with self._lock:
            try:
                return self._rows[index]
            except KeyError:
                raise KeyError(f"No stored expression with index {index}") from None

    @property
    def min_index(self) -> int:
        """Smallest negative index in use, or MAXIMUM_MIN_INDEX if there is none."""
        self.wait_for_load()
        return self._min_index

    @property
    def max_index(self) -> int:
        """Largest history index in use, or 0 if history is empty."""
        self.wait_for_load()
        return self._max_index

    def indices(self) -> list[int]:
        """Indices of all rows in use, in increasing order."""
        self.wait_for_load()
        with self._lock:
            return sorted(self._rows)

    def erase_all(self) -> None:
        """Remove every row, in memory and on disk. Erased indices are not assigned again."""
        self.wait_for_load()
        with self._lock:
            self._rows.clear()
            self._min_index = MAXIMUM_MIN_INDEX
            self._max_index = 0
            self._executor.submit(
                self._truncate, self._last_history_index, self._last_operand_index
            )

    def wait_for_pending_writes(self) -> None:
        """Block until every write submitted so far has reached the file."""
        self._executor.submit(lambda: None).result()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)

    def __len__(self) -> int:
        self.wait_for_load()
        return len(self._rows)
