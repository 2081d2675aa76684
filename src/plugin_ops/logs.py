"""Newline-delimited JSON log file for plugin-ops.

Each record becomes one line::

    {"ts": "2026-01-01T00:00:00.000Z", "level": "info", "message": "...", "data": {...}}

``data`` is taken from ``extra={"data": ...}`` on the logging call and is
omitted when absent. The file is rotated to ``<name>.old`` once it grows past
``MAX_LOG_BYTES``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from plugin_ops.paths import get_log_path

MAX_LOG_BYTES = 5 * 1024 * 1024
PACKAGE_LOGGER = "plugin_ops"

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def _level_name(levelno: int) -> str:
    if levelno in _LEVEL_NAMES:
        return _LEVEL_NAMES[levelno]
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


def _timestamp(created: float) -> str:
    stamp = datetime.fromtimestamp(created, UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


class JsonLinesHandler(logging.Handler):
    """Logging handler that appends JSON lines to a size-rotated file."""

    def __init__(self, path: Path, *, max_bytes: int = MAX_LOG_BYTES):
        super().__init__()
        self.path = Path(path)
        self.max_bytes = max_bytes

    def _rotate(self) -> None:
        # Missing file or a failed rename just means no rotation this time.
        with contextlib.suppress(OSError):
            if self.path.stat().st_size > self.max_bytes:
                os.replace(self.path, self.path.with_name(self.path.name + ".old"))

    def build_entry(self, record: logging.LogRecord) -> dict:
        entry: dict = {
            "ts": _timestamp(record.created),
            "level": _level_name(record.levelno),
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            error = f"{type(exc).__name__}: {exc}"
            if isinstance(data, dict):
                data = {**data, "error": error}
            elif data is None:
                data = {"error": error}
            else:
                data = {"value": data, "error": error}
        if data is not None:
            entry["data"] = data
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.build_entry(record), default=str)
            self._rotate()
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except Exception:
            self.handleError(record)


def configure_logging(
    level: int | str | None = None, log_path: Path | None = None
) -> logging.Logger:
    """Attach the JSON-lines handler to the package logger.

    Idempotent: a previously installed ``JsonLinesHandler`` is replaced, so
    calling this again (e.g. with a new path in tests) never duplicates lines.
    """
    if level is None:
        level = os.environ.get("OPS_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(logger.handlers):
        if isinstance(existing, JsonLinesHandler):
            logger.removeHandler(existing)
            existing.close()

    handler = JsonLinesHandler(log_path or get_log_path())
    handler.setLevel(level)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return logger
