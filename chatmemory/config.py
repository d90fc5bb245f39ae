"""
Configuration for the chat memory store.

Values come from dataclass defaults, an optional JSON config file and
CHATMEMORY_* environment variables, applied in that order. Device-specific
tuning (thresholds, dimensions) is done by whoever builds the config.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger("config")

ENV_PREFIX = "CHATMEMORY_"


@dataclass
class CleanupPolicy:
    """Retention limits applied by cleanup()."""
    max_age_days: float = 30
    max_sessions: int = 50


@dataclass
class StoreConfig:
    """Configuration of the primary and fallback engines."""
    max_messages_per_session: int = 100
    embedding_dimensions: int = 128
    embedding_model: str = "simple-builtin"
    similarity_threshold: float = 0.3
    max_storage_mb: float = 25
    cleanup_policy: CleanupPolicy = field(default_factory=CleanupPolicy)
    storage_key: str = "light_vector_db_v1"
    dedup_window_ms: int = 1000
    preview_length: int = 100
    data_dir: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.cleanup_policy, dict):
            self.cleanup_policy = CleanupPolicy(**self.cleanup_policy)
        if self.embedding_dimensions < 2:
            raise ValueError(f"embedding_dimensions must be at least 2, got {self.embedding_dimensions}")
        if not 0 <= self.similarity_threshold <= 1:
            raise ValueError(f"similarity_threshold must be within [0, 1], got {self.similarity_threshold}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StoreConfig':
        """Create a config from a mapping, ignoring unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_ENV_OVERRIDES = {
    "DATA_DIR": ("data_dir", str),
    "SIMILARITY_THRESHOLD": ("similarity_threshold", float),
    "EMBEDDING_DIMENSIONS": ("embedding_dimensions", int),
    "EMBEDDING_MODEL": ("embedding_model", str),
    "MAX_MESSAGES_PER_SESSION": ("max_messages_per_session", int),
    "MAX_STORAGE_MB": ("max_storage_mb", float),
    "STORAGE_KEY": ("storage_key", str),
}

_ENV_POLICY_OVERRIDES = {
    "MAX_AGE_DAYS": ("max_age_days", float),
    "MAX_SESSIONS": ("max_sessions", int),
}


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    for suffix, (name, cast) in _ENV_OVERRIDES.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value is not None:
            data[name] = cast(value)

    policy = dict(data.get("cleanup_policy") or {})
    for suffix, (name, cast) in _ENV_POLICY_OVERRIDES.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value is not None:
            policy[name] = cast(value)
    if policy:
        data["cleanup_policy"] = policy
    return data


def load_config(config_path: Optional[Union[str, Path]] = None) -> StoreConfig:
    """
    Load the store configuration.

    Args:
        config_path: Optional JSON file with StoreConfig fields

    Returns:
        The resulting StoreConfig

    Raises:
        FileNotFoundError: If config_path is given but does not exist
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f) or {}

    return StoreConfig.from_dict(_apply_env_overrides(data))
