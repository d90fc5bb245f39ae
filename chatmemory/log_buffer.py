"""
In-process log buffer.

A logging handler that keeps the most recent records in memory so the CLI can
show them with /logs, and notifies subscribers as records arrive.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, List

Listener = Callable[[logging.LogRecord], None]


class LogBuffer(logging.Handler):
    """
    Bounded buffer of recent log records.

    Args:
        max_records: Number of records kept; older ones are discarded
        level: Minimum level captured
    """

    def __init__(self, max_records: int = 1000, level: int = logging.NOTSET):
        super().__init__(level)
        self.records: Deque[logging.LogRecord] = deque(maxlen=max_records)
        self.listeners: List[Listener] = []
        self._emitting = False

    def emit(self, record: logging.LogRecord) -> None:
        # A listener that logs must not re-enter the buffer
        if self._emitting:
            return
        self._emitting = True
        try:
            self.records.append(record)
            for listener in list(self.listeners):
                listener(record)
        except Exception:
            self.handleError(record)
        finally:
            self._emitting = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new record.

        Returns:
            A function that removes the listener
        """
        self.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def get_records(self) -> List[logging.LogRecord]:
        return list(self.records)

    def format_logs(self, limit: int = 0) -> str:
        """Render records as ``[HH:MM:SS] [LEVEL] name: message`` lines."""
        records = self.get_records()
        if limit:
            records = records[-limit:]
        return "\n".join(
            f"[{time.strftime('%H:%M:%S', time.localtime(r.created))}] [{r.levelname}] {r.name}: {r.getMessage()}"
            for r in records
        )

    def clear(self) -> None:
        self.records.clear()


def install_log_buffer(max_records: int = 1000, level: int = logging.INFO) -> LogBuffer:
    """Attach a LogBuffer to the root logger and return it."""
    buffer = LogBuffer(max_records=max_records, level=level)
    logging.getLogger().addHandler(buffer)
    return buffer
