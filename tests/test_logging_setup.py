# tests/test_logging_setup.py

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from visa_compliance.logging_setup import ConsoleFilter, level_from_name, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.fixture()
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        if h not in handlers:
            h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("visa_compliance.core.engine", logging.DEBUG, True),
        ("visa_compliance", logging.INFO, True),
        ("visa_compliance.tasks.task_store", logging.INFO, False),
        ("visa_compliance.tasks.task_store", logging.WARNING, True),
        ("visa_compliance.tasks.task_api", logging.INFO, True),
        ("httpx", logging.WARNING, False),
        ("openai", logging.ERROR, True),
        ("py.warnings", logging.WARNING, False),
        ("visa_compliance_other", logging.INFO, False),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert ConsoleFilter().filter(_record(name, level)) is shown


def test_level_from_name() -> None:
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name(" Warning ") == logging.WARNING
    assert level_from_name("loud") == logging.INFO
    assert level_from_name(logging.ERROR) == logging.ERROR


def test_store_chatter_reaches_the_file_only(tmp_path: Path, restore_root_logging: None) -> None:
    log_file = setup_logging(log_dir=tmp_path / "logs", console_level="info")

    assert log_file == tmp_path / "logs" / "compliance.log"
    assert logging.getLogger("httpx").level == logging.WARNING

    logging.getLogger("visa_compliance.tasks.task_store").debug("row written id=abc")
    for h in logging.getLogger().handlers:
        h.flush()

    assert "row written id=abc" in log_file.read_text("utf-8")
