"""Remote MCP endpoint client (JSON-RPC over HTTP POST)."""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

import aiohttp

from plugin_runtime.constants import PROBE_TIMEOUT, RPC_TIMEOUT
from plugin_runtime.errors import McpStartError, RpcError
from plugin_runtime.mcp.types import ExternalServerOptions, ToolDefinition

logger = logging.getLogger(__name__)


class RemoteMcpClient:
    """Talks to one remote MCP server. Holds no connection between calls."""

    def __init__(self, options: ExternalServerOptions, log: Optional[logging.LoggerAdapter] = None):
        self.options = options
        self.log = log or logger
        self.connected = False

    @property
    def url(self) -> str:
        return self.options.url

    async def probe(self, timeout: float = PROBE_TIMEOUT) -> bool:
        """GET the endpoint with the auth headers. Any 2xx counts as reachable."""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.get(self.url, headers=self.options.auth_headers) as response:
                    if 200 <= response.status < 300:
                        return True
                    self.log.warning(f"Remote MCP server '{self.options.id}' probe returned HTTP {response.status}")
                    return False
        except Exception as e:
            self.log.warning(f"Remote MCP server '{self.options.id}' probe failed: {e}")
            return False

    async def connect(self) -> None:
        """Probe the endpoint before it is considered connected.

        Raises:
            McpStartError: if the endpoint is unreachable
        """
        if not await self.probe():
            raise McpStartError(f"Remote MCP server '{self.options.id}' is not reachable at {self.url}")
        self.connected = True
        self.log.info(f"Connected to remote MCP server '{self.options.id}' ({self.url})")

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        request_id = str(uuid.uuid4())
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        headers = {"Content-Type": "application/json", **self.options.auth_headers}
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.options.timeout or RPC_TIMEOUT)

        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(self.url, json=payload, headers=headers) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise RpcError(f"HTTP {response.status}: {text[:200]}")
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise
        except (aiohttp.ClientError, ValueError) as e:
            raise RpcError(f"Request to remote MCP server '{self.options.id}' failed: {e}") from e

        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            raise RpcError("Invalid JSON-RPC response")
        if data.get("id") != request_id:
            raise RpcError("JSON-RPC response ID mismatch")
        error = data.get("error")
        if error:
            raise RpcError(error.get("message", "Unknown error"), error.get("code"), error.get("data"))
        return data.get("result")

    async def list_tools(self) -> List[ToolDefinition]:
        result = await self.request("tools/list")
        return [ToolDefinition.model_validate(t) for t in (result or {}).get("tools", [])]

    async def call_tool(self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        return await self.request("tools/call", {"name": name, "arguments": arguments}, timeout=timeout)

    async def close(self) -> None:
        self.connected = False
