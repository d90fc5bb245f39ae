"""
Completion providers.

The chat manager only needs ``complete(history, new_message) -> str``; the
Ollama client implements it against a local Ollama server.
"""

from .base import CompletionProvider, build_conversation
from .model_client import OllamaClient

__all__ = [
    'CompletionProvider',
    'build_conversation',
    'OllamaClient',
]
