"""
Chat Manager for Chat Memory.

This module coordinates the memory store, the completion provider and the
retention scheduler, and provides the main API used by the CLI.
"""

import asyncio
import logging
from typing import List, Optional, Set, Tuple

from .completion.base import CompletionProvider
from .context_rules import ContextRulesStore, format_context
from .memory.base import MemoryStore
from .memory.exceptions import SessionNotFoundError
from .memory.models import Message, NewMessage, Role, SearchResult, Session
from .memory.retention import RetentionManager

# Configure logging
logger = logging.getLogger("chat_manager")


class ChatManager:
    """
    Manager for chat conversations backed by the memory store.

    Keeps track of the current session, sends user turns to the completion
    provider with recent history and recalled context, and stores both turns.
    """

    DEFAULT_SYSTEM_PROMPT = (
        "You are a helpful assistant running on the user's device. "
        "Answer concisely and use earlier conversation excerpts when they are relevant."
    )

    def __init__(
        self,
        store: MemoryStore,
        provider: Optional[CompletionProvider] = None,
        history_limit: int = 20,
        recall_limit: int = 3,
        cleanup_interval: int = 24 * 60 * 60,
        system_prompt: Optional[str] = None,
        context_rules: Optional[ContextRulesStore] = None,
    ):
        """
        Initialize the Chat Manager.

        Args:
            store: The memory store (normally a ResilientStore)
            provider: Completion provider; without one only user turns are stored
            history_limit: Number of recent messages sent as history
            recall_limit: Number of related earlier messages added as context
            cleanup_interval: Seconds between scheduled retention runs
            system_prompt: System prompt (defaults to DEFAULT_SYSTEM_PROMPT)
            context_rules: Optional user rules added to the system prompt while enabled
        """
        self.store = store
        self.provider = provider
        self.history_limit = history_limit
        self.recall_limit = recall_limit
        self.system_prompt = system_prompt or self.DEFAULT_SYSTEM_PROMPT
        self.context_rules = context_rules

        self.retention_manager = RetentionManager(store, cleanup_interval=cleanup_interval)

        self.current_session_id: Optional[str] = None
        self.is_generating = False
        self.background_tasks: List[asyncio.Task] = []

        logger.info(f"Chat Manager initialized ({'with' if provider else 'without'} completion provider)")

    async def start(self) -> None:
        """Load persisted data and start background tasks."""
        initialize = getattr(self.store, "initialize", None)
        if initialize is not None:
            await initialize()

        self._start_background_tasks()

    def _start_background_tasks(self) -> None:
        """Start background tasks like retention management."""
        retention_task = asyncio.create_task(self.retention_manager.start_cleanup_scheduler())
        self.background_tasks.append(retention_task)

        logger.info("Background tasks started")

    # =========================================================================
    # Sessions
    # =========================================================================

    async def new_session(self, title: Optional[str] = None) -> Session:
        """Create a session and make it current."""
        session = await self.store.create_session(title)
        self.current_session_id = session.id
        return session

    async def load_session(self, session_id: str) -> List[Message]:
        """
        Make an existing session current.

        Returns:
            The session's messages

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        self.current_session_id = session.id
        messages = await self.store.get_messages(session.id)
        logger.info(f"Loaded session {session.id} with {len(messages)} messages")
        return messages

    async def rename_session(self, title: str, session_id: Optional[str] = None) -> None:
        session_id = session_id or self.current_session_id
        if session_id is None:
            raise ValueError("No session selected")
        await self.store.update_session(session_id, {"title": title})

    async def delete_session(self, session_id: Optional[str] = None) -> None:
        """Delete a session (the current one by default)."""
        session_id = session_id or self.current_session_id
        if session_id is None:
            raise ValueError("No session selected")

        await self.store.delete_session(session_id)
        if session_id == self.current_session_id:
            self.current_session_id = None

    # =========================================================================
    # Conversation
    # =========================================================================

    async def recall(
        self,
        query: str,
        session_id: Optional[str] = None,
        exclude_ids: Optional[Set[str]] = None,
    ) -> List[SearchResult]:
        """
        Find earlier messages related to a query.

        Args:
            query: The text to search for
            session_id: Optional session to restrict the search to
            exclude_ids: Message ids left out of the results

        Returns:
            At most recall_limit related messages, best match first; empty on failure
        """
        if self.recall_limit <= 0:
            return []

        exclude_ids = exclude_ids or set()
        try:
            results = await self.store.search_similar_messages(
                query, session_id=session_id, limit=self.recall_limit + len(exclude_ids)
            )
        except Exception as e:
            logger.error(f"Error recalling related messages: {str(e)}")
            return []
        return [r for r in results if r.message.id not in exclude_ids][:self.recall_limit]

    async def _build_system_prompt(self, query: str, exclude_ids: Set[str]) -> str:
        prompt = self.system_prompt

        if self.context_rules is not None:
            context = await self.context_rules.get_context_for_prompt()
            if context:
                prompt = f"{prompt}\n\n{format_context(context)}"

        recalled = await self.recall(query, exclude_ids=exclude_ids)
        if recalled:
            excerpts = "\n".join(f"- ({r.message.role.value}) {r.message.content}" for r in recalled)
            logger.info(f"Adding {len(recalled)} recalled messages to the prompt")
            prompt = f"{prompt}\n\nRelevant earlier messages:\n{excerpts}"
        return prompt

    async def _generate_reply(self, user_message: Message, history: List[Message]) -> Optional[Message]:
        """Ask the provider for a reply to a stored user message and store it; None if generation fails."""
        turns = [{"role": m.role.value, "content": m.content} for m in history]
        # Skip turns already sent as history, and the message itself
        exclude_ids = {m.id for m in history} | {user_message.id}
        system_prompt = await self._build_system_prompt(user_message.content, exclude_ids)

        try:
            response = await self.provider.complete(turns, user_message.content, system_prompt=system_prompt)
        except Exception as e:
            logger.error(f"Error getting response from completion provider: {str(e)}")
            return None

        return await self.store.add_message(
            NewMessage(session_id=user_message.session_id, role=Role.ASSISTANT, content=response)
        )

    async def send_message(self, content: str) -> Tuple[Optional[Message], Optional[Message]]:
        """
        Send a user message in the current session.

        A session is created if none is current. The user turn is always
        stored; the assistant reply is stored when a provider is configured
        and answers.

        Args:
            content: The user's message

        Returns:
            Tuple of (user_message, assistant_message); both None when the
            message is empty or a reply is already being generated
        """
        content = content.strip()
        if not content:
            return None, None

        if self.is_generating:
            logger.warning("Already generating, ignoring send request")
            return None, None

        self.is_generating = True
        try:
            if self.current_session_id is None:
                await self.new_session()
            session_id = self.current_session_id

            history = await self.store.get_messages(session_id, limit=self.history_limit)
            user_message = await self.store.add_message(
                NewMessage(session_id=session_id, role=Role.USER, content=content)
            )

            if self.provider is None:
                logger.warning("No completion provider configured, storing the user message only")
                return user_message, None

            reply = await self._generate_reply(user_message, history)
            logger.info(f"Conversation turn complete in session {session_id}")
            return user_message, reply
        finally:
            self.is_generating = False

    async def retry_message(self, message_id: str) -> Optional[Message]:
        """
        Regenerate the reply to a user message.

        The assistant reply that directly follows the message is deleted and a
        new one is generated from the history preceding the message.

        Returns:
            The new assistant message, or None if nothing was generated
        """
        if self.current_session_id is None or self.provider is None:
            return None

        messages = await self.store.get_messages(self.current_session_id)
        index = next((i for i, m in enumerate(messages) if m.id == message_id), None)
        if index is None or messages[index].role != Role.USER:
            logger.warning(f"Cannot retry message {message_id}: not a user message in the current session")
            return None

        logger.info(f"Retrying message {message_id}")
        following = messages[index + 1] if index + 1 < len(messages) else None
        if following is not None and following.role == Role.ASSISTANT:
            await self.store.delete_message(following.id)
            logger.info(f"Removed previous reply {following.id}")

        history = messages[max(index - self.history_limit, 0):index]
        return await self._generate_reply(messages[index], history)

    async def shutdown(self) -> None:
        """Shut down the chat manager gracefully."""
        logger.info("Shutting down Chat Manager")

        # Cancel background tasks
        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks = []

        # Close completion provider
        if self.provider is not None:
            try:
                await self.provider.close()
            except Exception as e:
                logger.error(f"Error closing completion provider: {str(e)}")

        logger.info("Chat Manager shutdown complete")
