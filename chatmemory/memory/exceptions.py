"""
Exceptions raised by the chat memory subsystem.

The resilience chain treats an exception raised by the primary engine as a
reason to retry against the fallback engine, unless the exception reports
that the change was already applied in memory.
"""

from typing import Any, Optional


class MemoryStoreError(Exception):
    """Base class for memory store errors."""


class PersistenceError(MemoryStoreError):
    """
    Reading or writing the durable key-value blob failed.

    When raised after an in-memory mutation, ``applied`` is True and
    ``result`` holds what the operation would have returned.
    """

    def __init__(self, message: str, applied: bool = False, result: Optional[Any] = None):
        super().__init__(message)
        self.applied = applied
        self.result = result


class EmbeddingError(MemoryStoreError):
    """The embedding generator could not produce a vector."""


class SnapshotError(MemoryStoreError):
    """A persisted or imported snapshot is malformed or has an unknown version."""


class SessionNotFoundError(MemoryStoreError, KeyError):
    """A message was added to a session that does not exist."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"
