"""MCP Server for the IFC asset registry."""

import asyncio
import json
import logging

from mcp import Tool
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.types import TextContent

from . import __version__
from .core.tree_store import TreeStore
from .tools.registry_tools import RegistryTools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVER_NAME = "asset-registry-mcp"


class AssetRegistryMCPServer:
    """MCP Server for editing, importing and exporting asset hierarchies."""

    def __init__(self):
        """Initialize the MCP server with an empty workspace store."""
        self.store = TreeStore()
        self.registry_tools = RegistryTools(self.store)

        # Create MCP server instance
        self.server = Server(SERVER_NAME)

        # Register handlers
        self._register_handlers()

    def _register_handlers(self):
        """Register all MCP handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> list[Tool]:
            """List all available tools."""
            return self.registry_tools.get_tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
            """Route tool calls to appropriate handlers."""
            try:
                if not name.startswith("registry_"):
                    raise ValueError(f"Unknown tool: {name}")
                result = await self.registry_tools.handle_tool(name, arguments or {})
                return [TextContent(type="text", text=json.dumps(result, indent=2))]

            except Exception as e:
                logger.error(f"Error executing tool {name}: {e}")
                error_result = {
                    "error": str(e),
                    "tool": name,
                    "arguments": arguments
                }
                return [TextContent(type="text", text=json.dumps(error_result, indent=2))]

    async def run(self):
        """Run the MCP server."""
        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=self.server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={}
                    )
                )
            )


def main():
    """Main entry point for the MCP server."""
    server = AssetRegistryMCPServer()
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
