"""In-process log history backing the ``logs`` host method.

A ring-buffer ``logging.Handler`` captures records from Python's logging
module so a connected controller can fetch recent host diagnostics.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

MAX_LOG_LINES = 2000
MAX_LOG_MESSAGE_LENGTH = 8192


class LogRecordEntry(BaseModel):
    """A captured log entry, as served to controllers."""

    file: str = ""
    line: int = 0
    column: int = 0
    message: str
    details: str = ""
    severity: str = "info"  # "error", "warning" or "info"
    timestamp: float = 0.0


def _severity(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warning"
    return "info"


def _truncate(text: str) -> str:
    if len(text) > MAX_LOG_MESSAGE_LENGTH:
        return text[:MAX_LOG_MESSAGE_LENGTH] + "... [truncated]"
    return text


class LogHistoryHandler(logging.Handler):
    """Logging handler that keeps the most recent records in memory."""

    def __init__(self, capacity: int = MAX_LOG_LINES, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._entries: deque[LogRecordEntry] = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        """Incremented every time the history is cleared."""
        return self._generation

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            details = self.format(record)
            entry = LogRecordEntry(
                file=record.pathname,
                line=record.lineno,
                message=_truncate(record.getMessage().splitlines()[0] if record.msg else ""),
                details=_truncate(details),
                severity=_severity(record.levelno),
                timestamp=record.created,
            )
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def entries(self) -> list[LogRecordEntry]:
        """Snapshot of the buffered entries, oldest first."""
        with self._entries_lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()
            self._generation += 1

    def export_to_file(self, file_path: Path | str) -> int:
        """Export all buffered entries to a file.

        Returns:
            Number of log entries written
        """
        entries = self.entries()
        output_path = Path(file_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with output_path.open("w", encoding="utf-8") as f:
            f.write("# editor-bridge log export\n")
            f.write(f"# Total entries: {len(entries)}\n")
            f.write(f"# Buffer generation: {self._generation}\n")
            f.write("# " + "=" * 76 + "\n\n")
            for entry in entries:
                ts = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
                f.write(f"{ts} [{entry.severity.upper()}] {entry.details}\n")

        return len(entries)


def setup_log_history(
    capacity: int = MAX_LOG_LINES,
    logger: logging.Logger | None = None,
) -> LogHistoryHandler:
    """Attach a new :class:`LogHistoryHandler` to *logger* (root by default)."""
    handler = LogHistoryHandler(capacity)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    (logger or logging.getLogger()).addHandler(handler)
    return handler


def remove_log_history(
    handler: LogHistoryHandler,
    logger: logging.Logger | None = None,
) -> None:
    (logger or logging.getLogger()).removeHandler(handler)
    handler.close()


__all__ = [
    "LogHistoryHandler",
    "LogRecordEntry",
    "remove_log_history",
    "setup_log_history",
]
