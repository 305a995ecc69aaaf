# src/visa_compliance/logging_setup.py

"""
Console and file logging for the compliance CLI.

The console shares the terminal with the REPL prompt and the notifier toasts,
so it shows this package's records (store row chatter only from WARNING up)
and third-party records only from ERROR up. compliance.log gets everything.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

PACKAGE = "visa_compliance"
LOG_FILE_NAME = "compliance.log"

# package loggers held to WARNING on the console (file still gets DEBUG)
CONSOLE_QUIET_LOGGERS: tuple[str, ...] = (f"{PACKAGE}.tasks.task_store",)

# HTTP / SDK loggers capped at WARNING before any handler sees them
LIBRARY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _under(name: str, prefix: str) -> bool:
    return name == prefix or name.startswith(prefix + ".")


class ConsoleFilter(logging.Filter):
    def __init__(self, quiet: Iterable[str] = CONSOLE_QUIET_LOGGERS) -> None:
        super().__init__()
        self._quiet = tuple(quiet)

    def filter(self, record: logging.LogRecord) -> bool:
        if not _under(record.name, PACKAGE):
            return record.levelno >= logging.ERROR
        if any(_under(record.name, q) for q in self._quiet):
            return record.levelno >= logging.WARNING
        return True


def level_from_name(name: str | int, default: int = logging.INFO) -> int:
    """'debug' -> logging.DEBUG; unknown names fall back to `default`."""
    if isinstance(name, int):
        return name
    level = logging.getLevelName(str(name).strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path,
    console_level: str | int = "INFO",
    file_level: str | int = logging.DEBUG,
) -> Path:
    """
    Install the console and file handlers on the root logger, replacing any
    already there. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level_from_name(console_level))
    console.setFormatter(formatter)
    console.addFilter(ConsoleFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level_from_name(file_level, logging.DEBUG))
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.captureWarnings(True)

    return log_file
