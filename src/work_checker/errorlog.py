"""In-memory sink for warnings and errors raised by the tracker."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ROOT_LOGGER = "work_checker"


@dataclass(frozen=True, slots=True)
class LogEntry:
    level: str
    location: str
    message: str
    created: datetime

    def as_dict(self) -> dict[str, str]:
        return {
            "level": self.level,
            "location": self.location,
            "message": self.message,
            "created": self.created.isoformat(timespec="seconds"),
        }


class ErrorLogBuffer(logging.Handler):
    """Keeps the most recent anomalies so a user can inspect or copy them.

    Records are only collected; the handler never raises into the code that
    logged them.
    """

    def __init__(self, capacity: int = 500, level: int = logging.WARNING) -> None:
        super().__init__(level=level)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                level=record.levelname.lower(),
                location=f"{record.name}:{record.funcName}:{record.lineno}",
                message=record.getMessage(),
                created=datetime.fromtimestamp(record.created),
            )
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def entries(self) -> list[LogEntry]:
        with self._entries_lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()

    def human_readable(self) -> str:
        return "\n".join(
            f"[{entry.created:%Y-%m-%d %H:%M:%S}] {entry.level} at {entry.location}: {entry.message}"
            for entry in self.entries()
        )


def install_error_log(
    buffer: Optional[ErrorLogBuffer] = None, logger_name: str = ROOT_LOGGER
) -> ErrorLogBuffer:
    """Attach a buffer to the package logger, reusing one that is already there."""
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers:
        if isinstance(handler, ErrorLogBuffer) and (buffer is None or handler is buffer):
            return handler
    buffer = buffer or ErrorLogBuffer()
    logger.addHandler(buffer)
    return buffer
