"""
Session/Message Store for the chat memory subsystem.

In-memory hierarchical data model: sessions own ordered messages. Messages
live in one flat arena keyed by message id, with a secondary index from
session id to the ordered ids of its messages. Embeddings are indexed by
message id for similarity search. All methods are synchronous; the engines
wrap them with persistence and embedding generation.
"""

import logging
from typing import Dict, Iterator, List, Optional

import numpy as np

from .exceptions import SessionNotFoundError
from .models import (
    DEFAULT_SESSION_TITLE,
    Message,
    NewMessage,
    Session,
    SessionUpdate,
    generate_id,
    now_ms,
    truncate_content,
)

logger = logging.getLogger("memory.store")


class SessionStore:
    """
    Arena-plus-index storage for sessions, messages and embeddings.

    Session counters (message_count, preview, updated_at) are recomputed
    after every message mutation.
    """

    def __init__(self, preview_length: int = 100, dedup_window_ms: int = 1000):
        """
        Initialize an empty store.

        Args:
            preview_length: Maximum preview length before truncation
            dedup_window_ms: Window in which an identical message is treated as a duplicate
        """
        self.preview_length = preview_length
        self.dedup_window_ms = dedup_window_ms
        self.sessions: Dict[str, Session] = {}
        self.messages: Dict[str, Message] = {}
        self.session_index: Dict[str, List[str]] = {}
        self.embeddings: Dict[str, np.ndarray] = {}

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, title: Optional[str] = None) -> Session:
        timestamp = now_ms()
        session = Session(
            id=generate_id("session"),
            title=title or DEFAULT_SESSION_TITLE,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.sessions[session.id] = session
        self.session_index[session.id] = []
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def get_all_sessions(self) -> List[Session]:
        """All sessions, most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def update_session(self, session_id: str, update: SessionUpdate) -> bool:
        """Apply an update; returns False if the session does not exist."""
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self.sessions[session_id] = update.apply(session, max(now_ms(), session.updated_at))
        return True

    def delete_session(self, session_id: str) -> bool:
        """Remove a session with all of its messages and embeddings."""
        existed = self.sessions.pop(session_id, None) is not None
        for message_id in self.session_index.pop(session_id, []):
            self.messages.pop(message_id, None)
            self.embeddings.pop(message_id, None)
            existed = True
        return existed

    # =========================================================================
    # Messages
    # =========================================================================

    def find_duplicate(self, data: NewMessage, timestamp: int) -> Optional[Message]:
        """Find a message with the same role and content added within the dedup window."""
        for message_id in reversed(self.session_index.get(data.session_id, [])):
            existing = self.messages[message_id]
            if abs(timestamp - existing.timestamp) >= self.dedup_window_ms:
                continue
            if existing.role == data.role and existing.content == data.content:
                return existing
        return None

    def build_message(self, data: NewMessage, timestamp: Optional[int] = None) -> Message:
        return Message(
            id=generate_id("msg"),
            session_id=data.session_id,
            role=data.role,
            content=data.content,
            timestamp=timestamp if timestamp is not None else now_ms(),
            metadata=dict(data.metadata),
        )

    def insert_message(self, message: Message, create_missing_session: bool = False) -> Message:
        """
        Append a message to its session.

        Args:
            message: A message built by build_message
            create_missing_session: Create a placeholder session instead of raising

        Raises:
            SessionNotFoundError: If the session does not exist and create_missing_session is False
        """
        if message.session_id not in self.sessions:
            if not create_missing_session:
                raise SessionNotFoundError(message.session_id)
            self.sessions[message.session_id] = Session(
                id=message.session_id,
                created_at=message.timestamp,
                updated_at=message.timestamp,
            )
            self.session_index[message.session_id] = []

        self.messages[message.id] = message
        self.session_index[message.session_id].append(message.id)
        if message.embedding is not None:
            self.embeddings[message.id] = message.embedding
        self._refresh_session(message.session_id)
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        return self.messages.get(message_id)

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages of a session in insertion order, or the most recent ``limit``."""
        ids = self.session_index.get(session_id, [])
        if limit:
            ids = ids[-limit:]
        return [self.messages[message_id] for message_id in ids]

    def update_message_content(self, message_id: str, content: str, embedding: Optional[np.ndarray]) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None:
            return None
        message.content = content
        message.embedding = embedding
        if embedding is None:
            self.embeddings.pop(message_id, None)
        else:
            self.embeddings[message_id] = embedding
        self._refresh_session(message.session_id)
        return message

    def delete_message(self, message_id: str) -> bool:
        message = self.messages.pop(message_id, None)
        if message is None:
            return False
        self.embeddings.pop(message_id, None)
        ids = self.session_index.get(message.session_id)
        if ids is not None and message_id in ids:
            ids.remove(message_id)
        self._refresh_session(message.session_id)
        return True

    def iter_messages(self, session_id: Optional[str] = None) -> Iterator[Message]:
        """Iterate messages in global insertion order, optionally for one session."""
        if session_id is not None:
            yield from self.get_messages(session_id)
            return
        yield from self.messages.values()

    def _refresh_session(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return
        ids = self.session_index.get(session_id, [])
        session.message_count = len(ids)
        session.preview = (
            truncate_content(self.messages[ids[-1]].content, self.preview_length) if ids else ""
        )
        session.updated_at = max(now_ms(), session.updated_at)

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def clear(self) -> None:
        self.sessions.clear()
        self.messages.clear()
        self.session_index.clear()
        self.embeddings.clear()

    def replace_contents(
        self,
        sessions: List[Session],
        messages: Dict[str, List[Message]],
        embeddings: Dict[str, np.ndarray],
    ) -> None:
        """
        Replace everything with restored data.

        Each message is filed under the session it names itself, whichever
        list it arrived in. Messages whose session is missing and repeated
        message ids are dropped, as are embeddings whose message is missing,
        so a restored store never holds orphans.
        """
        self.clear()
        for session in sessions:
            self.sessions[session.id] = session
            self.session_index[session.id] = []

        dropped = 0
        rekeyed = 0
        for session_id, session_messages in messages.items():
            for message in session_messages:
                if message.session_id not in self.sessions or message.id in self.messages:
                    dropped += 1
                    continue
                if message.session_id != session_id:
                    rekeyed += 1
                embedding = embeddings.get(message.id)
                message.embedding = embedding
                self.messages[message.id] = message
                self.session_index[message.session_id].append(message.id)
                if embedding is not None:
                    self.embeddings[message.id] = embedding

        for session in self.sessions.values():
            ids = self.session_index[session.id]
            if rekeyed:
                ids.sort(key=lambda message_id: self.messages[message_id].timestamp)
            session.message_count = len(ids)
            if ids and not session.preview:
                session.preview = truncate_content(self.messages[ids[-1]].content, self.preview_length)

        if rekeyed:
            logger.warning(f"Filed {rekeyed} restored messages under the session they belong to")
        if dropped:
            logger.warning(f"Dropped {dropped} restored messages with a missing session or a repeated id")

    def check_integrity(self) -> List[str]:
        """
        Check referential invariants.

        Returns:
            A list of human-readable problems; empty when the store is consistent
        """
        problems = []
        indexed = set()
        for session_id, ids in self.session_index.items():
            session = self.sessions.get(session_id)
            if session is None:
                problems.append(f"index entry for missing session {session_id}")
                continue
            if session.message_count != len(ids):
                problems.append(
                    f"session {session_id} message_count={session.message_count} but holds {len(ids)}"
                )
            for message_id in ids:
                message = self.messages.get(message_id)
                if message is None:
                    problems.append(f"session {session_id} indexes missing message {message_id}")
                elif message.session_id != session_id:
                    problems.append(f"message {message_id} indexed under {session_id} but owned by {message.session_id}")
                indexed.add(message_id)

        for session_id in self.sessions:
            if session_id not in self.session_index:
                problems.append(f"session {session_id} has no message index")
        for message_id in self.messages:
            if message_id not in indexed:
                problems.append(f"orphaned message {message_id}")
        for message_id in self.embeddings:
            if message_id not in self.messages:
                problems.append(f"orphaned embedding {message_id}")
        return problems

    @property
    def message_total(self) -> int:
        return len(self.messages)

    def oldest_session_time(self) -> int:
        if not self.sessions:
            return now_ms()
        return min(session.created_at for session in self.sessions.values())
