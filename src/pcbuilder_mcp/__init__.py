"""PC build compatibility engine and MCP server."""

__version__ = "0.3.0"
