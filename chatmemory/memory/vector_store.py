"""
Vector Store for the chat memory subsystem.

The primary engine: sessions and messages held in memory, embeddings attached
to every message for similarity search, and the whole store written through
to durable key-value storage after each mutation.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..config import StoreConfig
from .base import MemoryStore, MessageData, SessionChanges
from .embeddings import HashingEmbedder, get_embedder
from .exceptions import PersistenceError, SessionNotFoundError
from .models import Message, NewMessage, SearchResult, Session, SessionStats, SessionUpdate, now_ms
from .persistence import KeyValueStorage, MemoryStorage, StorePersistence
from .retention import enforce_retention
from .search import search_similar
from .snapshot import build_snapshot, parse_snapshot, restore_snapshot
from .store import SessionStore

logger = logging.getLogger("memory.vector_store")


class VectorStore(MemoryStore):
    """
    Persistent, embedding-enabled chat memory store.

    In-memory state is mutated before any storage I/O is awaited, so reads
    always see the latest state even if the last save is still pending or
    failed. A failed save raises PersistenceError marked as applied, carrying
    the result of the mutation that was kept in memory.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        storage: Optional[KeyValueStorage] = None,
        embedder: Optional[HashingEmbedder] = None,
    ):
        """
        Initialize the vector store.

        Args:
            config: Store configuration (defaults if None)
            storage: Durable key-value storage. If None, uses in-memory storage.
            embedder: Embedding generator. If None, one is built from the config.
        """
        self.config = config or StoreConfig()
        self.storage = storage or MemoryStorage()
        self.embedder = embedder or get_embedder(self.config.embedding_model, self.config.embedding_dimensions)
        self.persistence = StorePersistence(self.storage, self.config.storage_key)
        self._store = SessionStore(
            preview_length=self.config.preview_length,
            dedup_window_ms=self.config.dedup_window_ms,
        )
        self.is_initialized = False
        self._deferred_save = False

        logger.info(f"Vector store created with {self.embedder} and storage {self.storage}")

    async def initialize(self) -> None:
        """Load persisted data once per process lifetime."""
        if self.is_initialized:
            return

        logger.info("Initializing vector store")
        await self.load()

    async def load(self) -> bool:
        """
        Replace the in-memory state with the persisted snapshot.

        Returns:
            True if data was restored; a missing or corrupt blob leaves the store empty
        """
        self.is_initialized = True
        return await self.persistence.load(self._store)

    async def save(self) -> int:
        """Write the full store to storage."""
        return await self.persistence.save(self._store)

    async def _commit(self, result: Any = None) -> Any:
        """
        Save after an in-memory mutation.

        Returns:
            result, unchanged

        Raises:
            PersistenceError: With ``applied`` set and ``result`` attached, if the save fails
        """
        if self._deferred_save:
            return result
        try:
            await self.save()
        except PersistenceError as e:
            raise PersistenceError(str(e), applied=True, result=result) from e
        return result

    def _embed(self, text: str) -> Optional[np.ndarray]:
        """Embed text, returning None instead of raising."""
        try:
            return self.embedder.embed(text)
        except Exception as e:
            logger.warning(f"Failed to generate embedding, storing message without one: {str(e)}")
            return None

    # =========================================================================
    # Session Management
    # =========================================================================

    async def create_session(self, title: Optional[str] = None) -> Session:
        await self.initialize()
        session = self._store.create_session(title)
        logger.info(f"Created session {session.id} '{session.title}'")
        return await self._commit(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        await self.initialize()
        return self._store.get_session(session_id)

    async def get_all_sessions(self) -> List[Session]:
        await self.initialize()
        return self._store.get_all_sessions()

    async def update_session(self, session_id: str, changes: SessionChanges) -> bool:
        update = SessionUpdate.coerce(changes)
        await self.initialize()

        if not self._store.update_session(session_id, update):
            logger.warning(f"Session not found for update: {session_id}")
            return False

        logger.debug(f"Updated session {session_id}: {', '.join(update.changes())}")
        return await self._commit(True)

    async def delete_session(self, session_id: str) -> bool:
        await self.initialize()

        if not self._store.delete_session(session_id):
            logger.debug(f"Session already absent: {session_id}")
            return False

        logger.info(f"Deleted session {session_id}")
        return await self._commit(True)

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def add_message(self, message_data: MessageData) -> Message:
        """
        Add a message to a session.

        An identical message (same role and content) added to the same session
        within the dedup window is returned instead of inserting a duplicate.

        Raises:
            SessionNotFoundError: If the session does not exist
            PersistenceError: If the write-through save fails; the message is kept in memory
        """
        data = NewMessage.coerce(message_data)
        await self.initialize()

        if self._store.get_session(data.session_id) is None:
            raise SessionNotFoundError(data.session_id)

        timestamp = now_ms()
        duplicate = self._store.find_duplicate(data, timestamp)
        if duplicate is not None:
            logger.warning(f"Duplicate message detected in session {data.session_id}, returning {duplicate.id}")
            return duplicate

        message = self._store.build_message(data, timestamp)
        message.embedding = self._embed(message.content)
        self._store.insert_message(message)

        logger.info(
            f"Added {message.role.value} message {message.id} to session {message.session_id} "
            f"({'with' if message.embedding is not None else 'without'} embedding)"
        )
        return await self._commit(message)

    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        await self.initialize()
        return self._store.get_messages(session_id, limit)

    async def update_message(self, message_id: str, content: str) -> Optional[Message]:
        await self.initialize()

        if self._store.get_message(message_id) is None:
            logger.warning(f"Message not found for update: {message_id}")
            return None

        message = self._store.update_message_content(message_id, content, self._embed(content))
        logger.debug(f"Updated message {message_id}")
        return await self._commit(message)

    async def delete_message(self, message_id: str) -> bool:
        await self.initialize()

        if not self._store.delete_message(message_id):
            logger.warning(f"Message not found for deletion: {message_id}")
            return False

        logger.info(f"Deleted message {message_id}")
        return await self._commit(True)

    # =========================================================================
    # Vector Search
    # =========================================================================

    async def search_similar_messages(
        self,
        query: Union[str, np.ndarray],
        session_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[SearchResult]:
        await self.initialize()

        results = search_similar(
            self._store,
            self.embedder,
            query,
            session_id=session_id,
            limit=limit,
            threshold=self.config.similarity_threshold,
        )

        query_label = query[:50] if isinstance(query, str) else "<embedding>"
        top = f"{results[0].similarity:.3f}" if results else "n/a"
        logger.info(f"Vector search for '{query_label}' found {len(results)} results (top similarity {top})")
        return results

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def get_stats(self) -> SessionStats:
        await self.initialize()
        return SessionStats(
            total_sessions=len(self._store.sessions),
            total_messages=self._store.message_total,
            storage_used=len(self.persistence.serialize(self._store).encode("utf-8")),
            oldest_session=self._store.oldest_session_time(),
        )

    async def cleanup(self) -> None:
        await self.initialize()
        self._deferred_save = True
        try:
            await enforce_retention(self, self.config)
        finally:
            self._deferred_save = False
        logger.info("Vector store cleanup completed")
        await self._commit()

    async def export_data(self) -> Dict[str, Any]:
        await self.initialize()
        return build_snapshot(self._store)

    async def import_data(self, data: Dict[str, Any]) -> None:
        """
        Replace the store's contents with a snapshot.

        Raises:
            SnapshotError: If the snapshot is invalid or has an unknown version
        """
        snapshot = parse_snapshot(data)
        await self.initialize()
        restore_snapshot(self._store, snapshot)
        logger.info(f"Imported {len(self._store.sessions)} sessions and {self._store.message_total} messages")
        await self._commit()

    def check_integrity(self) -> List[str]:
        """Report referential problems in the in-memory data; empty when consistent."""
        return self._store.check_integrity()

    def __len__(self) -> int:
        """Number of stored messages."""
        return self._store.message_total

    def __str__(self) -> str:
        return (
            f"VectorStore(storage={self.storage}, sessions={len(self._store.sessions)}, "
            f"messages={self._store.message_total})"
        )
