"""
Memory subpackage.

On-device storage for chat sessions and messages with offline semantic
retrieval:
- Hashing embeddings and cosine-similarity search
- A persistent primary engine with write-through JSON storage
- An in-memory fallback engine and the resilient chain over both
- Retention of old sessions and the storage budget
"""

from .base import MemoryStore
from .embeddings import AVAILABLE_MODELS, EmbeddingModel, HashingEmbedder, cosine_similarity, get_embedder
from .exceptions import EmbeddingError, MemoryStoreError, PersistenceError, SessionNotFoundError, SnapshotError
from .fallback import InMemoryStore
from .models import Message, NewMessage, Role, SearchResult, Session, SessionStats, SessionUpdate
from .persistence import JsonFileStorage, KeyValueStorage, MemoryStorage, StorePersistence
from .resilience import ResilientStore, build_store, fallback_on_error
from .retention import RetentionManager, enforce_retention
from .vector_store import VectorStore

__all__ = [
    'MemoryStore',
    'VectorStore',
    'InMemoryStore',
    'ResilientStore',
    'build_store',
    'fallback_on_error',
    'HashingEmbedder',
    'EmbeddingModel',
    'AVAILABLE_MODELS',
    'get_embedder',
    'cosine_similarity',
    'Session',
    'Message',
    'NewMessage',
    'Role',
    'SessionUpdate',
    'SearchResult',
    'SessionStats',
    'KeyValueStorage',
    'JsonFileStorage',
    'MemoryStorage',
    'StorePersistence',
    'RetentionManager',
    'enforce_retention',
    'MemoryStoreError',
    'PersistenceError',
    'EmbeddingError',
    'SnapshotError',
    'SessionNotFoundError',
]
