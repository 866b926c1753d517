"""
Main entry point for Project Memory MCP Server.

This module provides the main() function and server initialization.
"""

import asyncio

import structlog
from mcp.server.stdio import stdio_server

from .application import build_application, initialize_collections
from .config import settings
from .logging import configure_logging
from .storage import FileStorageProvider
from .tools import create_server

logger = structlog.get_logger(__name__)


def main():
    """Main entry point."""
    configure_logging(settings.log_level)

    async def run():
        storage = FileStorageProvider(settings.storage_path)
        await initialize_collections(storage)
        server = create_server(build_application(storage))

        logger.info("server_starting", storage_path=str(settings.storage_path))
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
