"""Main entry point for the recall memory engine."""

import asyncio
import logging
import os
import sys

from .clients import create_client
from .clients.factory import get_provider
from .interfaces.cli import MemoryCLI
from .memory.manager import MemoryManager
from .config import config

logger = logging.getLogger(__name__)


def check_api_keys(provider: str) -> bool:
    """Check if required API keys are available for the provider."""
    if provider == "anthropic":
        if not os.getenv("ANTHROPIC_API_KEY"):
            logger.error("ANTHROPIC_API_KEY environment variable is not set.")
            return False
    elif provider == "openai_compat":
        if not os.getenv("OPENAI_COMPAT_API_KEY"):
            # Local servers such as Ollama accept unauthenticated requests
            logger.warning("OPENAI_COMPAT_API_KEY not set, sending requests without a key.")

    return True


def cli_main():
    """Entry point for CLI."""
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    provider = config.models.provider or get_provider(config.models.model)
    if not check_api_keys(provider):
        sys.exit(1)

    try:
        client = create_client(provider, config.models.model)
    except ValueError as e:
        logger.error("Error creating client: %s", e)
        sys.exit(1)

    manager = MemoryManager(llm=client)
    cli = MemoryCLI(manager)

    asyncio.run(cli.run())


if __name__ == "__main__":
    cli_main()
