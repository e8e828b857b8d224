"""
Main entry point for Logseq Search MCP Server.

This module provides the main() function and server initialization.
"""

import asyncio

from mcp.server.stdio import stdio_server

from .cache import CachedCorpus, CorpusCache
from .config import Settings, settings
from .graph_files import GraphDirectoryProvider
from .logging import configure_logging, get_logger
from .provider import CorpusProvider, LogseqApiProvider
from .tools import create_server

logger = get_logger(__name__)


def build_provider(config: Settings = settings) -> CorpusProvider:
    """Pick the corpus provider named by the settings."""
    if config.provider == "files":
        return GraphDirectoryProvider(config.graph_path, config.max_nesting_level)
    return LogseqApiProvider(config.api_url, config.api_token, config.request_timeout)


def main():
    """Main entry point."""
    configure_logging()

    async def run():
        provider = build_provider(settings)
        corpus = CachedCorpus(provider, CorpusCache(settings), settings)
        server = create_server(corpus)
        logger.info("server_starting", provider=settings.provider)
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            if isinstance(provider, LogseqApiProvider):
                await provider.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()
