"""spacemind MCP server."""

from .server import MCPServerApp, main

__all__ = ["MCPServerApp", "main"]
