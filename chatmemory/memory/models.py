"""
Data models for the chat memory subsystem.

Sessions own ordered messages; messages optionally carry an embedding used by
similarity search. Timestamps are integer epoch milliseconds so that the
persisted layout stays compatible with the on-device format.
"""

import itertools
import secrets
import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np


DEFAULT_SESSION_TITLE = "New Chat"

_id_counter = itertools.count(1)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """
    Generate a collision-resistant identifier.

    Combines wall-clock time, a per-process counter and a random suffix so that
    rapid sequential inserts never collide without a central sequencer.
    """
    return f"{prefix}_{now_ms()}_{next(_id_counter)}_{secrets.token_hex(4)}"


def truncate_content(content: str, max_length: int = 100) -> str:
    """Shorten content for session previews."""
    return content[:max_length] + "..." if len(content) > max_length else content


class Role(str, Enum):
    """Roles in a conversation."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Session:
    """A named, ordered container of messages representing one conversation."""
    id: str
    title: str = DEFAULT_SESSION_TITLE
    preview: str = ""
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    message_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted (camelCase) representation."""
        return {
            "id": self.id,
            "title": self.title,
            "preview": self.preview,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messageCount": self.message_count,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        """Create a Session from its persisted representation."""
        created_at = int(data.get("createdAt", now_ms()))
        return cls(
            id=data["id"],
            title=data.get("title") or DEFAULT_SESSION_TITLE,
            preview=data.get("preview", ""),
            created_at=created_at,
            updated_at=int(data.get("updatedAt", created_at)),
            message_count=int(data.get("messageCount", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Message:
    """A message in a session, with an optional embedding."""
    id: str
    session_id: str
    role: Role
    content: str
    timestamp: int = field(default_factory=now_ms)
    embedding: Optional[np.ndarray] = field(default=None, repr=False, compare=False)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the persisted representation.

        The embedding is not included; it is serialized separately in the
        snapshot's embedding list keyed by message id.
        """
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Create a Message from its persisted representation."""
        return cls(
            id=data["id"],
            session_id=data["sessionId"],
            role=Role(data["role"]),
            content=data["content"],
            timestamp=int(data.get("timestamp", now_ms())),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class NewMessage:
    """The caller-supplied part of a message; id and timestamp are assigned by the store."""
    session_id: str
    role: Role
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.role, str):
            self.role = Role(self.role)

    @classmethod
    def coerce(cls, data: Union['NewMessage', Mapping[str, Any]]) -> 'NewMessage':
        """Accept either a NewMessage or a mapping with session_id/sessionId, role and content."""
        if isinstance(data, NewMessage):
            return data
        session_id = data.get("session_id", data.get("sessionId"))
        if session_id is None:
            raise ValueError("Message data requires a session_id")
        return cls(
            session_id=session_id,
            role=data["role"],
            content=data["content"],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class SessionUpdate:
    """
    The fields of a session a caller may change.

    Only fields that are not None are applied; id, timestamps and counters are
    owned by the store.
    """
    title: Optional[str] = None
    preview: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def coerce(cls, data: Union['SessionUpdate', Mapping[str, Any]]) -> 'SessionUpdate':
        if isinstance(data, SessionUpdate):
            return data
        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
        return cls(**dict(data))

    def changes(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def apply(self, session: Session, timestamp: int) -> Session:
        """Return a copy of the session with these changes and a fresh updated_at."""
        return replace(session, **self.changes(), updated_at=timestamp)


@dataclass
class SearchResult:
    """A message matched by similarity search."""
    message: Message
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message.to_dict(), "similarity": self.similarity}


@dataclass
class SessionStats:
    """Aggregate numbers about the store's content."""
    total_sessions: int
    total_messages: int
    storage_used: int  # bytes of the serialized snapshot
    oldest_session: int  # epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSessions": self.total_sessions,
            "totalMessages": self.total_messages,
            "storageUsed": self.storage_used,
            "oldestSession": self.oldest_session,
        }
