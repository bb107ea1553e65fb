"""Persisted user settings: angle mode and the memory register."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from .config import DATA_DIR, PREFERENCES_FILE_NAME
from .logging_config import get_logger

logger = get_logger("preferences")

KEY_DEGREE_MODE = "degree_mode"
KEY_MEMORY_INDEX = "memory_index"

_DEFAULTS: dict[str, Any] = {KEY_DEGREE_MODE: False, KEY_MEMORY_INDEX: 0}


class Preferences:
    """A small JSON document of settings, rewritten atomically on every change."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else DATA_DIR / PREFERENCES_FILE_NAME
        self._values = dict(_DEFAULTS)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load preferences: {e}, using defaults")
            return
        if not isinstance(data, dict):
            logger.warning("Preferences file has invalid structure, using defaults")
            return
        for key, default in _DEFAULTS.items():
            value = data.get(key, default)
            if isinstance(value, type(default)):
                self._values[key] = value

    def _save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write atomically (write to temp file then rename)
            temp_file = self.path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2)
            temp_file.replace(self.path)
        except OSError as e:
            logger.warning(f"Failed to save preferences: {e}")

    @property
    def degree_mode(self) -> bool:
        return self._values[KEY_DEGREE_MODE]

    @degree_mode.setter
    def degree_mode(self, value: bool) -> None:
        self._values[KEY_DEGREE_MODE] = bool(value)
        self._save()

    @property
    def memory_index(self) -> int:
        return self._values[KEY_MEMORY_INDEX]

    @memory_index.setter
    def memory_index(self, value: int) -> None:
        self._values[KEY_MEMORY_INDEX] = int(value)
        self._save()
