"""
The store contract shared by the primary engine, the fallback engine and the
resilient chain that wraps them.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from .models import Message, NewMessage, SearchResult, Session, SessionStats, SessionUpdate

MessageData = Union[NewMessage, Mapping[str, Any]]
SessionChanges = Union[SessionUpdate, Mapping[str, Any]]


class MemoryStore(ABC):
    """Abstract base class for chat memory stores."""

    # Session management
    @abstractmethod
    async def create_session(self, title: Optional[str] = None) -> Session:
        """Create an empty session."""

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        """Return a session, or None if it does not exist."""

    @abstractmethod
    async def get_all_sessions(self) -> List[Session]:
        """Return all sessions, most recently updated first."""

    @abstractmethod
    async def update_session(self, session_id: str, changes: SessionChanges) -> bool:
        """Update a session's title, preview or metadata; returns False for a missing id."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session together with its messages and embeddings; returns False for a missing id."""

    # Message operations
    @abstractmethod
    async def add_message(self, message_data: MessageData) -> Message:
        """Add a message, returning an existing one if this is a rapid duplicate."""

    @abstractmethod
    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """Return a session's messages in order, or only the most recent ``limit``."""

    @abstractmethod
    async def update_message(self, message_id: str, content: str) -> Optional[Message]:
        """Replace a message's content; returns None for a missing id."""

    @abstractmethod
    async def delete_message(self, message_id: str) -> bool:
        """Delete one message; returns False for a missing id."""

    # Search
    @abstractmethod
    async def search_similar_messages(
        self,
        query: Union[str, np.ndarray],
        session_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[SearchResult]:
        """Return messages related to a query, best match first."""

    # Maintenance
    @abstractmethod
    async def get_stats(self) -> SessionStats:
        """Return aggregate numbers about the store."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Apply the retention policy."""

    @abstractmethod
    async def export_data(self) -> Dict[str, Any]:
        """Return a versioned snapshot of the whole store."""

    @abstractmethod
    async def import_data(self, data: Dict[str, Any]) -> None:
        """Replace the store's contents with a snapshot."""
