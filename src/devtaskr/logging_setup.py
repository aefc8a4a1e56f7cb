# src/devtaskr/logging_setup.py

from __future__ import annotations

"""
Logging for the devtaskr console.

The console shares stderr with the `>` prompt, so only task-board activity reaches
it; the log file under the data dir keeps everything at DEBUG.
"""

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "devtaskr.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Minimum console level per logger prefix; the longest matching prefix wins.
CONSOLE_LEVELS: dict[str, int] = {
    "devtaskr": logging.DEBUG,
    # The local change feed polls SQLite every few seconds.
    "devtaskr.store.change_feed": logging.WARNING,
}
OTHER_CONSOLE_LEVEL = logging.ERROR

# Library loggers capped for every handler.
LIBRARY_LEVELS: dict[str, int] = {
    "httpx": logging.INFO,
    "httpcore": logging.WARNING,
    "python_http_client": logging.WARNING,
}


def console_threshold(logger_name: str, levels: dict[str, int] | None = None) -> int:
    levels = CONSOLE_LEVELS if levels is None else levels
    best, best_len = OTHER_CONSOLE_LEVEL, -1
    for prefix, level in levels.items():
        if (logger_name == prefix or logger_name.startswith(prefix + ".")) and len(prefix) > best_len:
            best, best_len = level, len(prefix)
    return best


class BoardConsoleFilter(logging.Filter):
    """Pass app records by CONSOLE_LEVELS; sendgrid, httpx and py.warnings only at ERROR."""

    def __init__(self, levels: dict[str, int] | None = None) -> None:
        super().__init__()
        self._levels = dict(CONSOLE_LEVELS if levels is None else levels)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= console_threshold(record.name, self._levels)


def setup_logging(
    *,
    log_dir: str | Path | None = ".local/devtaskr",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path | None:
    """
    Install the console handler and, when `log_dir` is given, `<log_dir>/devtaskr.log`.

    Replaces whatever handlers the root logger had; calling it twice does not
    duplicate output.
    Returns the log file path, or None for console-only logging.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    console.addFilter(BoardConsoleFilter())
    root.addHandler(console)

    log_file: Path | None = None
    if log_dir is not None:
        log_file = Path(log_dir) / LOG_FILE_NAME
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug("Logging ready file=%s", log_file)
    return log_file
