"""
Retention Policy for the chat memory subsystem.

Evicts sessions by age and count, then enforces the per-session message cap
and the storage budget. Eviction works through the public store contract, so
the same pass serves the primary engine, the fallback engine and the
resilient chain.
"""

import asyncio
import logging
import time
from typing import List

from ..config import StoreConfig
from .models import Session, now_ms

logger = logging.getLogger("memory.retention")

DAY_MS = 24 * 60 * 60 * 1000
MB = 1024 * 1024


def select_expired_sessions(sessions: List[Session], max_age_days: float, now: int) -> List[Session]:
    """Sessions created before the age cutoff."""
    cutoff = now - max_age_days * DAY_MS
    return [session for session in sessions if session.created_at < cutoff]


def select_excess_sessions(sessions: List[Session], max_sessions: int) -> List[Session]:
    """The least recently updated sessions beyond the count cap."""
    ordered = sorted(sessions, key=lambda s: s.updated_at, reverse=True)
    return ordered[max(max_sessions, 0):]


async def enforce_retention(store, config: StoreConfig) -> int:
    """
    Apply every retention limit to a store.

    Args:
        store: Any implementation of the store contract
        config: Limits to enforce

    Returns:
        Number of sessions removed
    """
    policy = config.cleanup_policy
    removed = 0

    sessions = await store.get_all_sessions()
    for session in select_expired_sessions(sessions, policy.max_age_days, now_ms()):
        await store.delete_session(session.id)
        removed += 1
        logger.debug(f"Removed session {session.id} older than {policy.max_age_days} days")

    sessions = await store.get_all_sessions()
    for session in select_excess_sessions(sessions, policy.max_sessions):
        await store.delete_session(session.id)
        removed += 1
        logger.debug(f"Removed session {session.id} beyond the {policy.max_sessions} session cap")

    trimmed = 0
    if config.max_messages_per_session > 0:
        for session in await store.get_all_sessions():
            messages = await store.get_messages(session.id)
            excess = len(messages) - config.max_messages_per_session
            for message in messages[:max(excess, 0)]:
                await store.delete_message(message.id)
                trimmed += 1

    if config.max_storage_mb > 0:
        budget = config.max_storage_mb * MB
        stats = await store.get_stats()
        while stats.storage_used > budget and stats.total_sessions > 0:
            oldest = (await store.get_all_sessions())[-1]
            await store.delete_session(oldest.id)
            removed += 1
            logger.debug(f"Removed session {oldest.id} to fit the {config.max_storage_mb} MB budget")
            stats = await store.get_stats()

    if removed or trimmed:
        logger.info(f"Retention removed {removed} sessions and trimmed {trimmed} messages")
    return removed


class RetentionManager:
    """
    Runs the store's cleanup on demand or on a schedule.

    Cleanup runs through the store passed in, so with a resilient chain a
    failing primary falls back like any other call.
    """

    def __init__(
        self,
        store,
        cleanup_interval: int = 24 * 60 * 60,  # 24 hours in seconds
    ):
        """
        Initialize the retention manager.

        Args:
            store: The store to clean up
            cleanup_interval: Interval between automatic cleanup runs in seconds
        """
        self.store = store
        self.cleanup_interval = cleanup_interval
        self.is_cleaning = False
        self.last_cleanup_time = 0

    async def run_cleanup(self) -> bool:
        """
        Run one cleanup pass unless one is already in progress.

        Returns:
            True if a pass ran
        """
        if self.is_cleaning:
            logger.info("Cleanup already in progress, skipping")
            return False

        self.is_cleaning = True
        try:
            logger.info("Starting cleanup of expired sessions")
            await self.store.cleanup()
            self.last_cleanup_time = time.time()
            logger.info("Cleanup complete")
            return True
        finally:
            self.is_cleaning = False

    async def start_cleanup_scheduler(self) -> None:
        """Run cleanup every cleanup_interval seconds until cancelled."""
        logger.info(f"Starting cleanup scheduler with interval {self.cleanup_interval} seconds")

        while True:
            await asyncio.sleep(self.cleanup_interval)

            try:
                await self.run_cleanup()
            except Exception as e:
                logger.error(f"Error in scheduled cleanup: {str(e)}")
