"""
Snapshot schema for persisting, exporting and importing the store.

A snapshot is a JSON object tagged with a schema version. Version 1 is the
current layout:

    {"version": 1,
     "sessions":   [[session_id, Session], ...],
     "messages":   [[session_id, [Message, ...]], ...],
     "embeddings": [[message_id, [float, ...]], ...],
     "timestamp":  epoch_ms}

Blobs without a version field are the legacy on-device layout (version 0),
which used the same pair lists for persistence and plain objects keyed by id
for exports; both forms are accepted and migrated.
"""

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .exceptions import SnapshotError
from .models import DEFAULT_SESSION_TITLE, Message, Role, Session, now_ms
from .store import SessionStore

logger = logging.getLogger("memory.snapshot")

CURRENT_VERSION = 1
SUPPORTED_VERSIONS = (0, 1)


class SessionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = DEFAULT_SESSION_TITLE
    preview: str = ""
    createdAt: int
    updatedAt: int
    messageCount: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageRecord(BaseModel):
    # Legacy blobs carry a serialized embedding inline; it is ignored in favour
    # of the embedding list.
    model_config = ConfigDict(extra="ignore")

    id: str
    sessionId: str
    role: Role
    content: str
    timestamp: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SnapshotV0(BaseModel):
    """Legacy, unversioned layout."""
    model_config = ConfigDict(extra="ignore")

    version: Literal[0] = 0
    sessions: Union[List[Tuple[str, SessionRecord]], List[SessionRecord]] = Field(default_factory=list)
    messages: Union[List[Tuple[str, List[MessageRecord]]], Dict[str, List[MessageRecord]]] = Field(default_factory=list)
    embeddings: Union[List[Tuple[str, List[float]]], Dict[str, List[float]]] = Field(default_factory=list)
    timestamp: Optional[int] = None


class SnapshotV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: Literal[1]
    sessions: List[Tuple[str, SessionRecord]] = Field(default_factory=list)
    messages: List[Tuple[str, List[MessageRecord]]] = Field(default_factory=list)
    embeddings: List[Tuple[str, List[float]]] = Field(default_factory=list)
    timestamp: int


Snapshot = Annotated[Union[SnapshotV0, SnapshotV1], Field(discriminator="version")]
_snapshot_adapter = TypeAdapter(Snapshot)


def _pairs(value: Union[list, dict]) -> list:
    return list(value.items()) if isinstance(value, dict) else list(value)


def migrate(snapshot: Union[SnapshotV0, SnapshotV1]) -> SnapshotV1:
    """Bring any supported snapshot up to the current version."""
    if isinstance(snapshot, SnapshotV1):
        return snapshot

    sessions = [
        item if isinstance(item, tuple) else (item.id, item)
        for item in snapshot.sessions
    ]
    migrated = SnapshotV1(
        version=1,
        sessions=sessions,
        messages=_pairs(snapshot.messages),
        embeddings=_pairs(snapshot.embeddings),
        timestamp=snapshot.timestamp or now_ms(),
    )
    logger.info(f"Migrated legacy snapshot with {len(migrated.sessions)} sessions to version {CURRENT_VERSION}")
    return migrated


def parse_snapshot(data: Any) -> SnapshotV1:
    """
    Validate a snapshot payload and migrate it to the current version.

    Args:
        data: Decoded JSON object

    Returns:
        A validated SnapshotV1

    Raises:
        SnapshotError: If the payload is not an object, has an unsupported
            version or fails validation
    """
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot must be a JSON object, got {type(data).__name__}")

    version = data.get("version", 0)
    if version not in SUPPORTED_VERSIONS:
        raise SnapshotError(f"Unsupported snapshot version: {version!r}")

    try:
        snapshot = _snapshot_adapter.validate_python({**data, "version": version})
    except ValidationError as e:
        raise SnapshotError(f"Invalid snapshot (version {version}): {e.error_count()} validation errors") from e

    return migrate(snapshot)


def build_snapshot(store: SessionStore) -> Dict[str, Any]:
    """Serialize the store into a current-version, JSON-ready snapshot."""
    return {
        "version": CURRENT_VERSION,
        "sessions": [[session.id, session.to_dict()] for session in store.sessions.values()],
        "messages": [
            [session_id, [store.messages[message_id].to_dict() for message_id in ids]]
            for session_id, ids in store.session_index.items()
        ],
        "embeddings": [
            [message_id, [float(value) for value in embedding]]
            for message_id, embedding in store.embeddings.items()
        ],
        "timestamp": now_ms(),
    }


def restore_snapshot(store: SessionStore, snapshot: SnapshotV1) -> None:
    """Replace the store's contents with a validated snapshot."""
    sessions = [Session.from_dict(record.model_dump()) for _, record in snapshot.sessions]
    messages: Dict[str, List[Message]] = {}
    for session_id, records in snapshot.messages:
        messages.setdefault(session_id, []).extend(
            Message.from_dict(record.model_dump()) for record in records
        )
    embeddings = {
        message_id: np.asarray(values, dtype=np.float32)
        for message_id, values in snapshot.embeddings
    }
    store.replace_contents(sessions, messages, embeddings)
