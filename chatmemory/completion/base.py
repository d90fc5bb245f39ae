"""
Base completion provider interface.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

ChatTurn = Dict[str, str]


def build_conversation(
    history: Sequence[ChatTurn],
    new_message: str,
    system_prompt: Optional[str] = None,
) -> List[ChatTurn]:
    """
    Assemble the full conversation sent to a model.

    Args:
        history: Previous turns as ``{"role", "content"}`` mappings, oldest first
        new_message: The user's new message
        system_prompt: Optional system message placed first

    Returns:
        The conversation, ending with the new user turn
    """
    conversation: List[ChatTurn] = []
    if system_prompt:
        conversation.append({"role": "system", "content": system_prompt})
    conversation.extend({"role": turn["role"], "content": turn["content"]} for turn in history)
    conversation.append({"role": "user", "content": new_message})
    return conversation


class CompletionProvider(ABC):
    """Abstract base class for text-completion backends."""

    @abstractmethod
    async def complete(
        self,
        history: Sequence[ChatTurn],
        new_message: str,
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        Generate the assistant's reply.

        Args:
            history: Previous turns, oldest first
            new_message: The user's new message
            system_prompt: Optional system message

        Returns:
            The reply text
        """

    async def close(self) -> None:
        """Release any resources held by the provider."""
