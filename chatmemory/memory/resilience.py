"""
Resilience Chain for the chat memory subsystem.

Every contract call goes to the primary engine first. If it raises, the
failure is logged and the same call is re-issued against the fallback engine,
so callers see reduced functionality instead of errors. A failed save after
a change the primary already applied is logged and the primary's result is
returned, so the caller never holds an id the primary does not know.
"""

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from ..config import StoreConfig
from .base import MemoryStore, MessageData, SessionChanges
from .fallback import InMemoryStore
from .models import Message, SearchResult, Session, SessionStats
from .persistence import JsonFileStorage, KeyValueStorage, MemoryStorage
from .vector_store import VectorStore

logger = logging.getLogger("memory.resilience")


def either(primary_result: bool, fallback_result: bool) -> bool:
    return bool(primary_result or fallback_result)


def merge_sessions(primary_sessions: List[Session], fallback_sessions: List[Session]) -> List[Session]:
    """Primary sessions plus fallback-only sessions, most recently updated first."""
    known = {session.id for session in primary_sessions}
    extra = [session for session in fallback_sessions if session.id not in known]
    if not extra:
        return primary_sessions
    return sorted(primary_sessions + extra, key=lambda s: s.updated_at, reverse=True)


def fallback_on_error(consult_on_empty: bool = False, combine: Optional[Callable[[Any, Any], Any]] = None):
    """
    Route a contract method to the primary engine, then to the fallback on failure.

    The decorated method's body is never run; the method name selects the
    engine method to call.

    Args:
        consult_on_empty: Also ask the fallback when the primary returns an
            empty result (None, False or an empty list)
        combine: Always also call the fallback and merge both results with
            this function
    """
    def decorator(method):
        name = method.__name__

        @functools.wraps(method)
        async def wrapper(self, *args, **kwargs):
            try:
                result = await getattr(self.primary, name)(*args, **kwargs)
            except Exception as e:
                self.failure_count += 1
                if not getattr(e, "applied", False):
                    logger.warning(f"Primary store failed in {name}, using fallback: {str(e)}")
                    return await getattr(self.fallback, name)(*args, **kwargs)
                logger.error(f"Primary store could not persist {name}, change kept in memory only: {str(e)}")
                result = e.result

            if combine is not None:
                return combine(result, await getattr(self.fallback, name)(*args, **kwargs))
            if consult_on_empty and not result:
                fallback_result = await getattr(self.fallback, name)(*args, **kwargs)
                if fallback_result:
                    logger.debug(f"{name} answered from the fallback store")
                    return fallback_result
            return result

        return wrapper

    return decorator


class ResilientStore(MemoryStore):
    """
    Primary/fallback pair behind the store contract.

    No data is migrated between the engines; data written to the fallback
    lives only as long as the process. Lookups, updates and deletes that miss
    in the primary reach the fallback, so anything the fallback holds stays
    listable, editable and deletable.
    """

    def __init__(self, primary: MemoryStore, fallback: MemoryStore):
        """
        Initialize the chain.

        Args:
            primary: Persistent, embedding-enabled engine
            fallback: Volatile engine used when the primary fails
        """
        self.primary = primary
        self.fallback = fallback
        self.failure_count = 0

    async def initialize(self) -> None:
        """Load the primary's persisted data, if it has any."""
        initialize = getattr(self.primary, "initialize", None)
        if initialize is None:
            return
        try:
            await initialize()
        except Exception as e:
            logger.error(f"Error initializing primary store: {str(e)}")
            self.failure_count += 1

    @fallback_on_error()
    async def create_session(self, title: Optional[str] = None) -> Session:
        ...

    @fallback_on_error(consult_on_empty=True)
    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    @fallback_on_error(combine=merge_sessions)
    async def get_all_sessions(self) -> List[Session]:
        ...

    @fallback_on_error(consult_on_empty=True)
    async def update_session(self, session_id: str, changes: SessionChanges) -> bool:
        ...

    @fallback_on_error(combine=either)
    async def delete_session(self, session_id: str) -> bool:
        ...

    @fallback_on_error()
    async def add_message(self, message_data: MessageData) -> Message:
        ...

    @fallback_on_error(consult_on_empty=True)
    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        ...

    @fallback_on_error(consult_on_empty=True)
    async def update_message(self, message_id: str, content: str) -> Optional[Message]:
        ...

    @fallback_on_error(combine=either)
    async def delete_message(self, message_id: str) -> bool:
        ...

    @fallback_on_error()
    async def search_similar_messages(
        self,
        query: Union[str, np.ndarray],
        session_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[SearchResult]:
        ...

    @fallback_on_error()
    async def get_stats(self) -> SessionStats:
        ...

    @fallback_on_error()
    async def cleanup(self) -> None:
        ...

    @fallback_on_error()
    async def export_data(self) -> Dict[str, Any]:
        ...

    @fallback_on_error()
    async def import_data(self, data: Dict[str, Any]) -> None:
        ...

    def check_integrity(self) -> List[str]:
        """Integrity problems of both engines, prefixed with the engine name."""
        problems = []
        for label, engine in (("primary", self.primary), ("fallback", self.fallback)):
            check = getattr(engine, "check_integrity", None)
            if check is not None:
                problems.extend(f"{label}: {problem}" for problem in check())
        return problems


def build_store(config: Optional[StoreConfig] = None, storage: Optional[KeyValueStorage] = None) -> ResilientStore:
    """
    Build the resilient store for a configuration.

    Args:
        config: Store configuration (defaults if None)
        storage: Durable storage for the primary engine. If None, a JSON file
            storage in config.data_dir is used, or memory storage when no data
            directory is configured.

    Returns:
        A ResilientStore over a VectorStore and an InMemoryStore
    """
    config = config or StoreConfig()
    if storage is None:
        storage = JsonFileStorage(config.data_dir) if config.data_dir else MemoryStorage()

    primary = VectorStore(config=config, storage=storage)
    fallback = InMemoryStore(config=config)
    logger.info(f"Built resilient store: {primary} with in-memory fallback")
    return ResilientStore(primary, fallback)
