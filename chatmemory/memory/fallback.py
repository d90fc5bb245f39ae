"""
Fallback Store for the chat memory subsystem.

Keeps sessions and messages in memory for the lifetime of the process only.
No embeddings are computed and search is a plain substring match, so this
engine keeps working when storage or embedding generation is unavailable.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..config import StoreConfig
from .base import MemoryStore, MessageData, SessionChanges
from .models import Message, NewMessage, SearchResult, Session, SessionStats, SessionUpdate, now_ms
from .retention import enforce_retention
from .search import search_substring
from .snapshot import build_snapshot, parse_snapshot, restore_snapshot
from .store import SessionStore

logger = logging.getLogger("memory.fallback")


class InMemoryStore(MemoryStore):
    """
    Volatile store with substring search.

    Messages for unknown sessions are accepted by creating a placeholder
    session, so a write re-issued after a primary failure never fails here.
    """

    SUBSTRING_SIMILARITY = 0.8

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self._store = SessionStore(
            preview_length=self.config.preview_length,
            dedup_window_ms=self.config.dedup_window_ms,
        )
        logger.info("In-memory fallback store created")

    async def create_session(self, title: Optional[str] = None) -> Session:
        session = self._store.create_session(title)
        logger.info(f"Created in-memory session {session.id}")
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self._store.get_session(session_id)

    async def get_all_sessions(self) -> List[Session]:
        return self._store.get_all_sessions()

    async def update_session(self, session_id: str, changes: SessionChanges) -> bool:
        update = SessionUpdate.coerce(changes)
        if not self._store.update_session(session_id, update):
            logger.warning(f"Session not found for update: {session_id}")
            return False
        return True

    async def delete_session(self, session_id: str) -> bool:
        return self._store.delete_session(session_id)

    async def add_message(self, message_data: MessageData) -> Message:
        data = NewMessage.coerce(message_data)
        timestamp = now_ms()

        duplicate = self._store.find_duplicate(data, timestamp)
        if duplicate is not None:
            logger.warning(f"Duplicate message detected in session {data.session_id}, returning {duplicate.id}")
            return duplicate

        if self._store.get_session(data.session_id) is None:
            logger.info(f"Creating placeholder session {data.session_id} for incoming message")

        message = self._store.build_message(data, timestamp)
        return self._store.insert_message(message, create_missing_session=True)

    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        return self._store.get_messages(session_id, limit)

    async def update_message(self, message_id: str, content: str) -> Optional[Message]:
        message = self._store.update_message_content(message_id, content, None)
        if message is None:
            logger.warning(f"Message not found for update: {message_id}")
        return message

    async def delete_message(self, message_id: str) -> bool:
        if not self._store.delete_message(message_id):
            logger.debug(f"Message not found for deletion: {message_id}")
            return False
        return True

    async def search_similar_messages(
        self,
        query: Union[str, np.ndarray],
        session_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[SearchResult]:
        results = search_substring(
            self._store,
            query,
            session_id=session_id,
            limit=limit,
            similarity=self.SUBSTRING_SIMILARITY,
        )
        logger.debug(f"Substring search found {len(results)} results")
        return results

    async def get_stats(self) -> SessionStats:
        return SessionStats(
            total_sessions=len(self._store.sessions),
            total_messages=self._store.message_total,
            storage_used=0,
            oldest_session=self._store.oldest_session_time(),
        )

    async def cleanup(self) -> None:
        await enforce_retention(self, self.config)

    async def export_data(self) -> Dict[str, Any]:
        return build_snapshot(self._store)

    async def import_data(self, data: Dict[str, Any]) -> None:
        restore_snapshot(self._store, parse_snapshot(data))
        logger.info(f"Imported {len(self._store.sessions)} sessions into the in-memory store")

    def check_integrity(self) -> List[str]:
        return self._store.check_integrity()

    def __len__(self) -> int:
        return self._store.message_total
