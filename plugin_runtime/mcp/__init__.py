"""MCP server supervision: stdio/remote clients and the process manager.

Imports are lazy so that manifest parsing only pulls in the option models.
"""

__all__ = [
    "McpProcessManager",
    "McpRuntime",
    "McpServerInstance",
    "McpStatus",
    "McpTransport",
    "StdioRpcClient",
    "RemoteMcpClient",
    "ToolDefinition",
]


def __getattr__(name):
    if name == "McpProcessManager":
        from plugin_runtime.mcp.manager import McpProcessManager
        return McpProcessManager
    if name == "McpRuntime":
        from plugin_runtime.mcp.runtime import McpRuntime
        return McpRuntime
    if name in ("McpServerInstance", "McpStatus", "McpTransport", "ToolDefinition"):
        from plugin_runtime.mcp import types
        return getattr(types, name)
    if name == "StdioRpcClient":
        from plugin_runtime.mcp.jsonrpc import StdioRpcClient
        return StdioRpcClient
    if name == "RemoteMcpClient":
        from plugin_runtime.mcp.remote import RemoteMcpClient
        return RemoteMcpClient
    raise AttributeError(f"module 'plugin_runtime.mcp' has no attribute {name!r}")
