"""
Context Rules for Chat Memory.

User-written instructions that guide every reply. The rules are kept in the
same durable key-value storage as the memory store, with an on/off switch,
and are added to the system prompt while they are enabled.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .memory.exceptions import PersistenceError
from .memory.persistence import KeyValueStorage

logger = logging.getLogger("context_rules")

CONTEXT_RULES_KEY = "ai_context_rules"


@dataclass
class ContextRules:
    """Rules text and whether it is applied."""
    text: str = ""
    enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "enabled": self.enabled}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextRules":
        return cls(text=str(data.get("text") or ""), enabled=bool(data.get("enabled", False)))

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.text.strip())


def format_context(text: str) -> str:
    """Wrap rules in delimiters that set them apart from the conversation."""
    text = text.strip()
    if not text:
        return ""
    return (
        f"<SYSTEM_CONTEXT>\n{text}\n</SYSTEM_CONTEXT>\n\n"
        "Please follow the above context and rules in your responses."
    )


class ContextRulesStore:
    """
    Loads and saves context rules under a single storage key.

    Reads are cached for ``cache_seconds``; saving refreshes the cache.
    Unreadable or malformed data yields disabled, empty rules.
    """

    def __init__(self, storage: KeyValueStorage, key: str = CONTEXT_RULES_KEY, cache_seconds: float = 300):
        """
        Initialize the rules store.

        Args:
            storage: Durable key-value storage
            key: Storage key for the rules record
            cache_seconds: How long a loaded record is reused
        """
        self.storage = storage
        self.key = key
        self.cache_seconds = cache_seconds
        self._cached: Optional[ContextRules] = None
        self._loaded_at = 0.0

    async def get_rules(self) -> ContextRules:
        if self._cached is not None and time.monotonic() - self._loaded_at < self.cache_seconds:
            return self._cached

        rules = ContextRules()
        try:
            blob = await self.storage.get_item(self.key)
        except Exception as e:
            logger.error(f"Failed to load context rules: {str(e)}")
            blob = None

        if blob:
            try:
                data = json.loads(blob)
                if isinstance(data, dict):
                    rules = ContextRules.from_dict(data)
                else:
                    logger.warning(f"Ignoring malformed context rules under '{self.key}'")
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring corrupt context rules under '{self.key}': {str(e)}")

        logger.debug(f"Loaded context rules ({len(rules.text)} chars, enabled={rules.enabled})")
        self._remember(rules)
        return rules

    async def get_context_for_prompt(self) -> Optional[str]:
        """The rules text to apply, or None when disabled or empty."""
        rules = await self.get_rules()
        if not rules.is_active:
            return None

        logger.info(f"Applying context rules ({len(rules.text)} chars)")
        return rules.text.strip()

    async def save_rules(self, rules: ContextRules) -> None:
        """
        Save rules and refresh the cache.

        Raises:
            PersistenceError: If the storage write fails
        """
        try:
            await self.storage.set_item(self.key, json.dumps(rules.to_dict(), ensure_ascii=False))
        except Exception as e:
            logger.error(f"Failed to save context rules: {str(e)}")
            raise PersistenceError(f"Failed to save context rules under '{self.key}': {str(e)}") from e

        self._remember(rules)
        logger.info(f"Saved context rules ({len(rules.text)} chars, enabled={rules.enabled})")

    async def update(self, text: Optional[str] = None, enabled: Optional[bool] = None) -> ContextRules:
        """Change the text and/or the switch, keeping whatever is not given."""
        current = await self.get_rules()
        rules = ContextRules(
            text=current.text if text is None else text,
            enabled=current.enabled if enabled is None else enabled,
        )
        await self.save_rules(rules)
        return rules

    def clear_cache(self) -> None:
        self._cached = None
        self._loaded_at = 0.0

    def _remember(self, rules: ContextRules) -> None:
        self._cached = rules
        self._loaded_at = time.monotonic()
