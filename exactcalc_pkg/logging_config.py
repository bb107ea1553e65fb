"""Logging setup for exactcalc.

Evaluation runs on worker threads, so every entry carries the thread name.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Optional

ROOT_LOGGER_NAME = "exactcalc"


class StructuredFormatter(logging.Formatter):
    """One line per entry: time, level, thread, logger and message."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds")
        line = (
            f"{timestamp} [{record.levelname}] ({record.threadName}) "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: Optional[str] = None, log_file: Optional[str] = None
) -> logging.Logger:
    """Configure the exactcalc logger hierarchy.

    Args:
        level: Logging level name; defaults to EXACTCALC_LOG_LEVEL or WARNING
        log_file: Optional file path that receives a copy of every entry

    Returns:
        The root exactcalc logger
    """
    level = level or os.getenv("EXACTCALC_LOG_LEVEL", "WARNING")
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for one exactcalc module, e.g. ``get_logger("store")``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
