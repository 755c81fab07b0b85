# src/tasker/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Libraries whose own loggers are capped even in the log file.
_LIBRARY_LEVELS = {
    "websockets": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"


class _ConsoleNoiseFilter(logging.Filter):
    """Per-job lines of the worker and queue stay in the file unless INFO+; foreign loggers need ERROR."""

    _job_loggers = ("tasker.notifications.dispatch_worker", "tasker.notifications.job_queue")

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(self._job_loggers):
            return record.levelno >= logging.INFO
        if record.name.startswith("tasker."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/tasker",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install the console and file handlers on the root logger and return the log file path.

    Call once, before the first service is built.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "tasker.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    jobs_file = logging.FileHandler(str(log_file), encoding="utf-8")
    jobs_file.setLevel(file_level)
    jobs_file.setFormatter(fmt)
    root.addHandler(jobs_file)

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    # warnings.warn(...) arrives as 'py.warnings' and is filtered like any foreign logger.
    logging.captureWarnings(True)
    return log_file
