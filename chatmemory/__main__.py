"""
Main entry point for the Chat Memory package.

Starts the terminal chat client with a persistent memory store and, unless
disabled, a local Ollama model for replies.
"""

import argparse
import asyncio
import logging
import sys

from . import DATA_DIR
from .chat_manager import ChatManager
from .cli import CommandLineInterface
from .completion.model_client import OllamaClient
from .config import load_config
from .context_rules import ContextRulesStore
from .log_buffer import install_log_buffer
from .memory.persistence import JsonFileStorage
from .memory.resilience import build_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger("main")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat Memory")

    # Storage options
    parser.add_argument("--data-dir", type=str, default=None,
                        help="Directory for storing sessions (default: package data directory)")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file with store configuration")
    parser.add_argument("--context-file", type=str, default=None,
                        help="Text file whose contents become the context rules (turned on)")

    # Model options
    parser.add_argument("--ollama-url", type=str, default="http://localhost:11434",
                        help="Base URL of the Ollama server")
    parser.add_argument("--model", type=str, default="llama3.2",
                        help="Ollama model used for replies")
    parser.add_argument("--temperature", type=float, default=0.7,
                        help="Temperature for model inference")
    parser.add_argument("--no-llm", action="store_true",
                        help="Store messages without generating replies")

    # General options
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default="WARNING", help="Set logging level")

    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point for Chat Memory."""
    args = parse_args(argv)

    # Configure logging level
    logging.getLogger().setLevel(getattr(logging, args.log_level))
    log_buffer = install_log_buffer()

    config = load_config(args.config)
    if args.data_dir:
        config.data_dir = args.data_dir
    elif not config.data_dir:
        config.data_dir = str(DATA_DIR)

    storage = JsonFileStorage(config.data_dir)
    store = build_store(config, storage)

    context_rules = ContextRulesStore(storage)
    if args.context_file:
        try:
            with open(args.context_file, "r", encoding="utf-8") as f:
                await context_rules.update(text=f.read(), enabled=True)
        except Exception as e:
            logger.error(f"Error loading context rules from {args.context_file}: {str(e)}")

    provider = None
    if not args.no_llm:
        provider = OllamaClient(
            model_name=args.model,
            base_url=args.ollama_url,
            temperature=args.temperature,
        )
        try:
            if not await provider.check_model_exists():
                logger.warning(f"Model {args.model} is missing; install it with: ollama pull {args.model}")
        except Exception as e:
            logger.warning(f"Could not reach Ollama at {args.ollama_url}: {str(e)}")

    chat_manager = ChatManager(store, provider=provider, context_rules=context_rules)
    await chat_manager.start()

    cli = CommandLineInterface(chat_manager, log_buffer=log_buffer)
    await cli.start()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nApplication terminated by user")
    except Exception as e:
        logger.error(f"Unhandled exception: {str(e)}")
        sys.exit(1)
