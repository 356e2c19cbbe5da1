"""Plugin runtime core: loads third-party plugins, runs their hooks per organization,
supervises their MCP tool servers and bridges tool calls to them."""

__version__ = "1.0.0"
