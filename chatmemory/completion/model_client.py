"""
Ollama Model Client for Chat Memory.

This module provides a completion provider backed by a local Ollama server,
with session reuse, error handling and retries.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .base import ChatTurn, CompletionProvider, build_conversation

# Configure logging
logger = logging.getLogger("model_client")


class OllamaClient(CompletionProvider):
    """
    Client for the Ollama chat API.

    Transient network errors are retried with exponential backoff; API errors
    are raised as RuntimeError.
    """

    def __init__(
        self,
        model_name: str = "llama3.2",
        base_url: str = "http://localhost:11434",
        request_timeout: int = 60,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ):
        """
        Initialize the Ollama client.

        Args:
            model_name: The Ollama model to chat with
            base_url: The base URL of the Ollama API
            request_timeout: Timeout for requests in seconds
            temperature: Temperature for model inference
            max_tokens: Maximum number of tokens to generate
        """
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.timeout = request_timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Initialized Ollama client for {model_name} at {self.base_url}")

    async def ensure_session(self) -> None:
        """Ensure an aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
    )
    async def check_model_exists(self, model_name: Optional[str] = None) -> bool:
        """
        Check if a model exists in Ollama.

        Args:
            model_name: The model to check (defaults to the client's model)

        Returns:
            True if the model exists, False otherwise
        """
        model_name = model_name or self.model_name
        await self.ensure_session()
        try:
            async with self.session.get(f"{self.base_url}/api/tags") as response:
                if response.status != 200:
                    logger.warning(f"Failed to get model list: {response.status}")
                    return False

                data = await response.json()
                names = {model.get("name") for model in data.get("models", [])}
                # Ollama reports untagged models as "<name>:latest"
                if model_name in names or f"{model_name}:latest" in names:
                    logger.info(f"Model {model_name} exists")
                    return True

                logger.warning(f"Model {model_name} not found in Ollama")
                return False
        except Exception as e:
            logger.error(f"Error checking model existence: {str(e)}")
            raise

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
    )
    async def chat(self, messages: List[ChatTurn]) -> str:
        """
        Send a conversation to the chat endpoint.

        Args:
            messages: The full conversation, ending with the user's turn

        Returns:
            The assistant's reply
        """
        await self.ensure_session()

        payload: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

        try:
            start_time = time.time()
            async with self.session.post(f"{self.base_url}/api/chat", json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Ollama API error: {response.status} - {error_text}")
                    raise RuntimeError(f"Ollama API error: {response.status} - {error_text}")

                data = await response.json()
                logger.info(f"Generated response in {time.time() - start_time:.2f}s")
                return data.get("message", {}).get("content", "")
        except Exception as e:
            logger.error(f"Error generating response: {str(e)}")
            raise

    async def complete(
        self,
        history: Sequence[ChatTurn],
        new_message: str,
        system_prompt: Optional[str] = None,
    ) -> str:
        messages = build_conversation(history, new_message, system_prompt)
        logger.debug(f"Sending {len(messages)} messages to {self.model_name}")
        return await self.chat(messages)
