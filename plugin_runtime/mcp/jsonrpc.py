"""JSON-RPC 2.0 client over a child process's stdin/stdout.

Messages are framed one JSON object per line. Responses are matched to
pending requests by id. The child's stderr is relayed to the server logger
at DEBUG. When the child exits every pending request fails with
ProcessExitError.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from plugin_runtime.constants import (
    CLIENT_NAME,
    CLIENT_VERSION,
    HANDSHAKE_TIMEOUT,
    KILL_GRACE_PERIOD,
    MCP_PROTOCOL_VERSION,
    RPC_TIMEOUT,
)
from plugin_runtime.errors import McpStartError, ProcessExitError, RpcError
from plugin_runtime.mcp.process import kill_gracefully, merge_env
from plugin_runtime.mcp.types import ToolDefinition

logger = logging.getLogger(__name__)

# Single JSON-RPC messages can carry large tool results
STREAM_LIMIT = 16 * 1024 * 1024


class StdioRpcClient:
    """Spawns one MCP server process and speaks JSON-RPC to it."""

    def __init__(
        self,
        server_id: str,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: float = RPC_TIMEOUT,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        log: Optional[logging.LoggerAdapter] = None,
        on_exit: Optional[Callable[[Optional[int]], Any]] = None,
    ):
        self.server_id = server_id
        self.command = command
        self.args = list(args or [])
        self.cwd = cwd
        self.env = dict(env or {})
        self.timeout = timeout
        self.handshake_timeout = handshake_timeout
        self.log = log or logger
        self.on_exit = on_exit

        self.process: Optional[asyncio.subprocess.Process] = None
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._tasks: List[asyncio.Task] = []
        self._closing = False
        self._exit_code: Optional[int] = None
        self._exited = asyncio.Event()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None and not self._exited.is_set()

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    async def start(self) -> None:
        """Spawn the process and complete the initialize handshake.

        Raises:
            McpStartError: if the spawn or the handshake fails
        """
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                cwd=str(self.cwd) if self.cwd else None,
                env=merge_env(self.env),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            raise McpStartError(f"Failed to spawn MCP server '{self.server_id}': {e}") from e

        self.log.info(f"Spawned MCP server '{self.server_id}' (pid {self.process.pid}): {self.command} {' '.join(self.args)}")
        self._tasks = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._read_stderr()),
        ]

        try:
            await self._handshake()
        except Exception as e:
            await self.close()
            if isinstance(e, McpStartError):
                raise
            raise McpStartError(f"MCP server '{self.server_id}' handshake failed: {e}") from e

    async def _handshake(self) -> None:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
            },
            timeout=self.handshake_timeout,
        )
        result = result or {}
        self.server_info = result.get("serverInfo", {})
        self.server_capabilities = result.get("capabilities", {})
        await self.notify("notifications/initialized")
        self.log.debug(f"MCP server '{self.server_id}' initialized: {self.server_info}")

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """Send a request and wait for the matching response.

        Raises:
            asyncio.TimeoutError: no response within the timeout
            RpcError: the server answered with an error object
            ProcessExitError: the process is gone or exited while waiting
        """
        if not self.is_alive:
            raise ProcessExitError(self.server_id, self._exit_code)

        request_id = str(uuid.uuid4())
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            await self._write(message)
            return await asyncio.wait_for(future, timeout=timeout or self.timeout)
        except asyncio.TimeoutError:
            self.log.warning(f"MCP request '{method}' to '{self.server_id}' timed out")
            raise
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def list_tools(self) -> List[ToolDefinition]:
        result = await self.request("tools/list", {})
        return [ToolDefinition.model_validate(t) for t in (result or {}).get("tools", [])]

    async def call_tool(self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        return await self.request("tools/call", {"name": name, "arguments": arguments}, timeout=timeout)

    async def _write(self, message: Dict[str, Any]) -> None:
        if self.process is None or self.process.stdin is None:
            raise ProcessExitError(self.server_id, self._exit_code)
        data = json.dumps(message, ensure_ascii=False) + "\n"
        try:
            self.process.stdin.write(data.encode("utf-8"))
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessExitError(self.server_id, self.process.returncode) from e

    async def _read_stdout(self) -> None:
        try:
            while True:
                line = await self.process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    self.log.debug(f"[{self.server_id}] non-JSON output: {text[:200]}")
                    continue
                if isinstance(message, dict):
                    await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.error(f"Reader for MCP server '{self.server_id}' failed: {e}")
        await self._handle_exit()

    async def _read_stderr(self) -> None:
        while True:
            line = await self.process.stderr.readline()
            if not line:
                return
            self.log.debug(f"[{self.server_id}] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        if "method" in message:
            if "id" in message:
                # Server-initiated request
                if message["method"] == "ping":
                    await self._write({"jsonrpc": "2.0", "id": message["id"], "result": {}})
                else:
                    await self._write({
                        "jsonrpc": "2.0",
                        "id": message["id"],
                        "error": {"code": -32601, "message": f"Method not found: {message['method']}"},
                    })
            else:
                self.log.debug(f"[{self.server_id}] notification {message['method']}")
            return

        future = self._pending.get(str(message.get("id")))
        if future is None or future.done():
            self.log.debug(f"[{self.server_id}] response for unknown id {message.get('id')}")
            return
        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            future.set_exception(RpcError(error.get("message", "Unknown error"), error.get("code"), error.get("data")))
        else:
            future.set_result(message.get("result"))

    async def _handle_exit(self) -> None:
        code = await self.process.wait()
        self._exit_code = code
        self._exited.set()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ProcessExitError(self.server_id, code))
        self._pending.clear()

        if self._closing:
            self.log.info(f"MCP server '{self.server_id}' stopped (code {code})")
            return
        self.log.warning(f"MCP server '{self.server_id}' exited unexpectedly with code {code}")
        if self.on_exit is not None:
            try:
                result = self.on_exit(code)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.log.error(f"Exit handler for MCP server '{self.server_id}' failed: {e}")

    async def wait_exited(self) -> Optional[int]:
        await self._exited.wait()
        return self._exit_code

    async def close(self, grace_period: float = KILL_GRACE_PERIOD) -> Optional[int]:
        """Terminate the process (SIGTERM, then SIGKILL after the grace period)."""
        self._closing = True
        if self.process is None:
            return None
        code = await kill_gracefully(self.process, grace_period)
        self._exit_code = code
        for task in self._tasks:
            if not task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=1)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    task.cancel()
        self._exited.set()
        return code
