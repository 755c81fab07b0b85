# tests/test_logging_setup.py

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from tasker.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter() -> None:
    f = _ConsoleNoiseFilter()
    assert f.filter(_record("tasker.tasks.task_service", logging.DEBUG))
    assert not f.filter(_record("tasker.notifications.dispatch_worker", logging.DEBUG))
    assert f.filter(_record("tasker.notifications.dispatch_worker", logging.INFO))
    assert not f.filter(_record("websockets.server", logging.WARNING))
    assert f.filter(_record("httpx", logging.ERROR))
    assert not f.filter(_record("py.warnings", logging.WARNING))


@pytest.fixture()
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


def test_setup_logging_writes_file(tmp_path: Path, restore_root_logger: None) -> None:
    log_file = setup_logging(log_dir=tmp_path / "logs")
    logging.getLogger("tasker.test").debug("hello file")

    for h in logging.getLogger().handlers:
        h.flush()
    assert log_file == tmp_path / "logs" / "tasker.log"
    assert "hello file" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING
