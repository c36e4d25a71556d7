#!/usr/bin/env python3
"""
TopstepX MCP Server
===================
Wires the session, gateway, reference data cache and tool dispatcher into
an MCP server running over stdio.

Startup authenticates once (fatal on failure), loads reference data and
schedules its periodic refresh.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.models import InitializationOptions
from pydantic import AnyUrl

from . import __version__
from .cache import ReferenceDataCache
from .config import SERVER_NAME, Settings
from .errors import AuthenticationError, ConfigurationError, ToolCallError
from .gateway import Gateway
from .resources import RESOURCE_TEMPLATES, RESOURCES, read_resource
from .session import SessionManager
from .tools import TOOLS, ToolDispatcher

# Configure logging (stderr; stdout carries the MCP protocol)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger("topstepx-mcp")

# ==========================================
# Application Context
# ==========================================

class AppContext:
    """Owns the long-lived collaborators of one server process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.session = SessionManager(settings)
        self.gateway = Gateway(self.session)
        self.cache = ReferenceDataCache(self.gateway, settings.common_symbols)
        self.dispatcher = ToolDispatcher(self.gateway, self.cache)

    async def start(self) -> None:
        """
        Authenticate, load reference data and start the refresh timer.

        Raises:
            AuthenticationError: Missing credentials or rejected login
        """
        await self.session.ensure_valid()
        logger.info("TopstepX MCP server authenticated successfully")

        await self.cache.refresh()
        self.cache.start_auto_refresh(self.settings.refresh_interval)

    async def aclose(self) -> None:
        self.cache.stop_auto_refresh()
        await self.gateway.aclose()
        await self.session.aclose()

# ==========================================
# MCP Server Implementation
# ==========================================

def create_server(context: AppContext) -> Server:
    """Build the MCP server and register its handlers against ``context``."""
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def handle_list_tools() -> List[types.Tool]:
        """List all available tools."""
        return TOOLS

    @server.call_tool()
    async def handle_call_tool(
        name: str,
        arguments: Optional[Dict[str, Any]]
    ) -> List[types.TextContent]:
        """Handle tool calls."""
        result = await context.dispatcher.call(name, arguments)
        text = json.dumps(result, indent=2, default=str)
        # Raising makes the server answer with isError=True
        if result.get("isError"):
            raise ToolCallError(text)
        return [types.TextContent(type="text", text=text)]

    @server.list_resources()
    async def handle_list_resources() -> List[types.Resource]:
        return RESOURCES

    @server.list_resource_templates()
    async def handle_list_resource_templates() -> List[types.ResourceTemplate]:
        return RESOURCE_TEMPLATES

    @server.read_resource()
    async def handle_read_resource(uri: AnyUrl) -> Iterable[ReadResourceContents]:
        text = await read_resource(context.cache, str(uri))
        return [ReadResourceContents(content=text, mime_type="application/json")]

    return server

# ==========================================
# Main Entry Point
# ==========================================

async def serve(settings: Optional[Settings] = None) -> None:
    """Run the MCP server until stdin closes."""
    settings = settings or Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    logger.info(
        f"Starting TopstepX MCP server v{__version__} "
        f"({settings.environment.value}, {settings.api_url})"
    )

    context = AppContext(settings)
    try:
        await context.start()
        server = create_server(context)

        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            logger.info("MCP stdio server started")

            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    )
                )
            )
    finally:
        logger.info("Shutting down TopstepX MCP server...")
        await context.aclose()


def main() -> None:
    """Console script entry point."""
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except (AuthenticationError, ConfigurationError) as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
