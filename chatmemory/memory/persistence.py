"""
Persistence Layer for the chat memory subsystem.

The whole store is serialized to a single JSON blob under one key of a
durable key-value storage. Engines call save() after every mutation
(write-through) and load() once per process lifetime.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import PersistenceError, SnapshotError
from .snapshot import build_snapshot, parse_snapshot, restore_snapshot
from .store import SessionStore

logger = logging.getLogger("memory.persistence")


class KeyValueStorage(ABC):
    """Asynchronous string key-value storage."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a key; absent keys are ignored."""


class MemoryStorage(KeyValueStorage):
    """Dictionary-backed storage that lives only as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def __str__(self) -> str:
        return f"MemoryStorage(keys={len(self.items)})"


class JsonFileStorage(KeyValueStorage):
    """
    File-backed storage: one ``<key>.json`` file per key in a data directory.

    Writes go through a temporary file that atomically replaces the target, so
    a crash mid-write never leaves a truncated blob behind.
    """

    def __init__(self, directory: Union[str, Path]):
        """
        Initialize the storage.

        Args:
            directory: Directory holding the blobs; created on first write
        """
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key or os.sep in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    async def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {str(e)}") from e

    async def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {str(e)}") from e

    async def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to remove {path}: {str(e)}") from e

    def __str__(self) -> str:
        return f"JsonFileStorage(directory={self.directory})"


class StorePersistence:
    """Saves and loads a SessionStore under a single storage key."""

    def __init__(self, storage: KeyValueStorage, key: str = "light_vector_db_v1"):
        self.storage = storage
        self.key = key

    def serialize(self, store: SessionStore) -> str:
        return json.dumps(build_snapshot(store), ensure_ascii=False)

    async def save(self, store: SessionStore) -> int:
        """
        Write the full store.

        Returns:
            Size of the written blob in bytes

        Raises:
            PersistenceError: If the storage write fails
        """
        blob = self.serialize(store)
        try:
            await self.storage.set_item(self.key, blob)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save store under '{self.key}': {str(e)}") from e

        logger.debug(f"Saved {len(store.sessions)} sessions and {store.message_total} messages under '{self.key}'")
        return len(blob.encode("utf-8"))

    async def load(self, store: SessionStore) -> bool:
        """
        Restore the store from storage.

        A missing, unreadable or corrupt blob leaves the store empty.

        Returns:
            True if data was restored
        """
        try:
            blob = await self.storage.get_item(self.key)
        except Exception as e:
            logger.warning(f"Failed to read stored data under '{self.key}': {str(e)}")
            store.clear()
            return False

        if not blob:
            logger.info(f"No stored data under '{self.key}', starting empty")
            store.clear()
            return False

        try:
            snapshot = parse_snapshot(json.loads(blob))
            restore_snapshot(store, snapshot)
        except (json.JSONDecodeError, SnapshotError) as e:
            logger.warning(f"Stored data under '{self.key}' is corrupt, starting empty: {str(e)}")
            store.clear()
            return False

        logger.info(
            f"Loaded {len(store.sessions)} sessions, {store.message_total} messages "
            f"and {len(store.embeddings)} embeddings from '{self.key}'"
        )
        return True
