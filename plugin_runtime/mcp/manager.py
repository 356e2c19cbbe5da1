"""MCP process manager - owns the MCP servers of one plugin/organization pair.

All server records live in one keyed registry on the manager and are only
mutated through its methods. Callers get snapshots via ``get_status``.

Supervision rules:
    - A health sweep runs every ``health_check_interval`` seconds. A failing
      server is marked Error and observers are notified. It is not restarted.
    - Only an unexpected exit of a local process triggers a restart, at most
      ``max_restarts`` times, each after ``restart_backoff`` seconds. When the
      ceiling is reached the server stays in Error.
    - Shutdown stops every tracked server in parallel.
"""

import asyncio
import inspect
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from plugin_runtime.constants import (
    HANDSHAKE_TIMEOUT,
    HEALTH_CHECK_INTERVAL,
    KILL_GRACE_PERIOD,
    MAX_RESTART_ATTEMPTS,
    RESTART_BACKOFF,
    RPC_TIMEOUT,
)
from plugin_runtime.errors import ManifestError, McpServerNotFound, McpStartError
from plugin_runtime.mcp.jsonrpc import StdioRpcClient
from plugin_runtime.mcp.process import run_command
from plugin_runtime.mcp.remote import RemoteMcpClient
from plugin_runtime.mcp.types import (
    ExternalServerOptions,
    McpServerInstance,
    McpStatus,
    McpTransport,
    StdioServerOptions,
    ToolDefinition,
)
from plugin_runtime.observers import ObserverRegistry
from plugin_runtime.plugins.contexts import get_plugin_logger
from plugin_runtime.plugins.manifest import resolve_within

logger = logging.getLogger(__name__)

_ACTIVE = (McpStatus.STARTING, McpStatus.RUNNING, McpStatus.STOPPING)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class LocalServerAdapter:
    """Uniform view over an in-process server returned by a ``start_local`` initializer.

    The initializer may return an object or a dict exposing any of
    ``list_tools``, ``call_tool`` and ``stop``.
    """

    def __init__(self, server: Any):
        self.server = server

    def _op(self, name: str) -> Optional[Callable]:
        if isinstance(self.server, dict):
            return self.server.get(name)
        return getattr(self.server, name, None)

    async def list_tools(self) -> List[ToolDefinition]:
        op = self._op("list_tools")
        if op is None:
            return []
        tools = await _maybe_await(op())
        return [t if isinstance(t, ToolDefinition) else ToolDefinition.model_validate(t) for t in tools or []]

    async def call_tool(self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        op = self._op("call_tool")
        if op is None:
            raise McpServerNotFound("Local MCP server does not implement call_tool")
        return await asyncio.wait_for(_maybe_await(op(name, arguments)), timeout=timeout or RPC_TIMEOUT)

    async def close(self) -> None:
        op = self._op("stop")
        if op is not None:
            await _maybe_await(op())


class McpProcessManager:
    """Starts, supervises and stops MCP servers for one plugin and organization."""

    def __init__(
        self,
        plugin_id: str,
        plugin_root: Path,
        org_id: Optional[str] = None,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        max_restarts: int = MAX_RESTART_ATTEMPTS,
        restart_backoff: float = RESTART_BACKOFF,
        kill_grace_period: float = KILL_GRACE_PERIOD,
        rpc_timeout: float = RPC_TIMEOUT,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        self.plugin_id = plugin_id
        self.plugin_root = Path(plugin_root)
        self.org_id = org_id
        self.health_check_interval = health_check_interval
        self.max_restarts = max_restarts
        self.restart_backoff = restart_backoff
        self.kill_grace_period = kill_grace_period
        self.rpc_timeout = rpc_timeout
        self.handshake_timeout = handshake_timeout

        self.observers = ObserverRegistry("McpProcessManager")
        self._servers: Dict[str, McpServerInstance] = {}
        self._restart_tasks: Dict[str, asyncio.Task] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def _claim(self, server_id: str, transport: McpTransport, options: Any) -> McpServerInstance:
        if self._shutting_down:
            raise McpStartError(f"Cannot start MCP server '{server_id}': manager is shutting down")
        existing = self._servers.get(server_id)
        if existing is not None and existing.status in _ACTIVE:
            raise McpStartError(f"MCP server with id '{server_id}' is already running")

        # A pending restart of the previous instance must not spawn a second process
        pending = self._restart_tasks.pop(server_id, None)
        if pending is not None and not pending.done():
            pending.cancel()
        instance = McpServerInstance(id=server_id, transport=transport, options=options)
        self._servers[server_id] = instance

        if existing is not None and existing.handle is not None:
            try:
                await self._close_handle(existing)
            except Exception as e:
                logger.error(f"[{self.plugin_id}] Error closing previous MCP server '{server_id}': {e}")
        return instance

    def _emit(self, event: str, instance: McpServerInstance, **extra: Any) -> None:
        self.observers.emit(
            event,
            server_id=instance.id,
            plugin_id=self.plugin_id,
            org_id=self.org_id,
            status=instance.status.value,
            **extra,
        )

    def _fail_start(self, instance: McpServerInstance, error: Exception) -> McpStartError:
        instance.status = McpStatus.ERROR
        instance.error = str(error)
        instance.handle = None
        self._emit("server_failed", instance, error=str(error))
        logger.error(f"[{self.plugin_id}] Failed to start MCP server '{instance.id}': {error}")
        if isinstance(error, McpStartError):
            return error
        return McpStartError(f"Failed to start MCP server '{instance.id}': {error}")

    def _mark_running(self, instance: McpServerInstance, tools: List[ToolDefinition]) -> None:
        instance.tools = tools
        instance.status = McpStatus.RUNNING
        instance.started_at = datetime.now()
        instance.error = None
        self._emit("server_started", instance, tools=[t.name for t in tools])
        self._ensure_health_checks()

    async def start_local(
        self,
        server_id: str,
        initializer: Callable[[Any], Any],
        context: Any = None,
    ) -> Dict[str, Any]:
        """Start an in-process server produced by ``initializer(context)``."""
        instance = await self._claim(server_id, McpTransport.LOCAL_CUSTOM, None)
        try:
            server = await _maybe_await(initializer(context))
            if server is None:
                raise McpStartError(f"Initializer for MCP server '{server_id}' returned nothing")
            adapter = LocalServerAdapter(server)
            instance.handle = adapter
            tools = await adapter.list_tools()
        except Exception as e:
            raise self._fail_start(instance, e) from e
        self._mark_running(instance, tools)
        logger.info(f"[{self.plugin_id}] Started local MCP server '{server_id}' with {len(tools)} tool(s)")
        return instance.to_dict()

    async def start_local_stdio(self, options: Union[StdioServerOptions, Dict[str, Any]]) -> Dict[str, Any]:
        """Run install/build if configured, spawn the process and handshake.

        Raises:
            McpStartError: on duplicate id, cwd escaping the plugin root,
                failing install/build, spawn or handshake failure
        """
        if isinstance(options, dict):
            options = StdioServerOptions.model_validate(options)
        instance = await self._claim(options.id, McpTransport.LOCAL_STDIO, options)
        try:
            cwd = resolve_within(self.plugin_root, options.cwd, what=f"MCP server '{options.id}' workingDir")
            if options.install:
                await run_command(options.install, cwd, options.env, label=f"{options.id} install")
            if options.build:
                await run_command(options.build, cwd, options.env, label=f"{options.id} build")
            await self._spawn(instance, cwd)
        except (ManifestError, McpStartError, OSError) as e:
            raise self._fail_start(instance, e) from e
        return instance.to_dict()

    async def _spawn(self, instance: McpServerInstance, cwd: Optional[Path] = None) -> None:
        options: StdioServerOptions = instance.options
        if cwd is None:
            cwd = resolve_within(self.plugin_root, options.cwd, what=f"MCP server '{options.id}' workingDir")
        instance.status = McpStatus.STARTING
        client = StdioRpcClient(
            server_id=options.id,
            command=options.command,
            args=options.args,
            cwd=cwd,
            env=options.env,
            timeout=options.timeout or self.rpc_timeout,
            handshake_timeout=self.handshake_timeout,
            log=get_plugin_logger(self.plugin_id, self.org_id, options.id),
        )
        client.on_exit = lambda code: self._on_process_exit(instance.id, client, code)
        instance.handle = client
        await client.start()

        try:
            tools = await client.list_tools()
        except Exception as e:
            logger.warning(f"[{self.plugin_id}] tools/list failed for MCP server '{instance.id}': {e}")
            tools = []
        if not client.is_alive:
            raise McpStartError(f"MCP server '{instance.id}' exited during startup (code {client.exit_code})")

        self._mark_running(instance, tools)
        logger.info(f"[{self.plugin_id}] MCP server '{instance.id}' running (pid {client.pid})")

    async def start_external(self, options: Union[ExternalServerOptions, Dict[str, Any]]) -> Dict[str, Any]:
        """Connect to a remote MCP endpoint after a reachability probe."""
        if isinstance(options, dict):
            options = ExternalServerOptions.model_validate(options)
        instance = await self._claim(options.id, McpTransport.REMOTE, options)
        client = RemoteMcpClient(options, log=get_plugin_logger(self.plugin_id, self.org_id, options.id))
        try:
            await client.connect()
            instance.handle = client
            try:
                tools = await client.list_tools()
            except Exception as e:
                logger.warning(f"[{self.plugin_id}] tools/list failed for remote MCP server '{options.id}': {e}")
                tools = []
        except Exception as e:
            raise self._fail_start(instance, e) from e
        self._mark_running(instance, tools)
        return instance.to_dict()

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------

    def _on_process_exit(self, server_id: str, client: StdioRpcClient, code: Optional[int]) -> None:
        instance = self._servers.get(server_id)
        if instance is None or instance.handle is not client:
            return
        if self._shutting_down or instance.status != McpStatus.RUNNING:
            return

        instance.status = McpStatus.ERROR
        instance.error = f"Process exited with code {code}"
        instance.handle = None

        pending = self._restart_tasks.get(server_id)
        if pending is not None and not pending.done():
            return
        self._restart_tasks[server_id] = asyncio.create_task(self._restart_loop(server_id, instance))

    async def _restart_loop(self, server_id: str, instance: McpServerInstance) -> None:
        try:
            while True:
                if self._servers.get(server_id) is not instance or self._shutting_down:
                    return
                if instance.status in (McpStatus.STOPPING, McpStatus.STOPPED):
                    return
                if instance.restart_count >= self.max_restarts:
                    instance.status = McpStatus.ERROR
                    logger.error(
                        f"[{self.plugin_id}] MCP server '{server_id}' exceeded {self.max_restarts} restart attempts"
                    )
                    self._emit("server_failed", instance, error=instance.error, restart_count=instance.restart_count)
                    return

                instance.restart_count += 1
                logger.warning(
                    f"[{self.plugin_id}] Restarting MCP server '{server_id}' "
                    f"(attempt {instance.restart_count}/{self.max_restarts}) in {self.restart_backoff}s"
                )
                self._emit("server_restarting", instance, attempt=instance.restart_count)
                await asyncio.sleep(self.restart_backoff)

                # Replaced by an explicit start during the backoff
                if self._servers.get(server_id) is not instance:
                    return
                if self._shutting_down or instance.status in (McpStatus.STOPPING, McpStatus.STOPPED):
                    return
                try:
                    await self._spawn(instance)
                    return
                except (ManifestError, McpStartError, OSError) as e:
                    await self._close_handle(instance)
                    instance.status = McpStatus.ERROR
                    instance.error = str(e)
                    logger.error(f"[{self.plugin_id}] Restart of MCP server '{server_id}' failed: {e}")
        finally:
            if self._restart_tasks.get(server_id) is asyncio.current_task():
                del self._restart_tasks[server_id]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _ensure_health_checks(self) -> None:
        if self.health_check_interval <= 0:
            return
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())

    async def _health_loop(self) -> None:
        while not self._shutting_down:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.check_health()
            except Exception as e:
                logger.error(f"[{self.plugin_id}] Health sweep failed: {e}")

    async def _is_healthy(self, instance: McpServerInstance) -> bool:
        handle = instance.handle
        if handle is None:
            return False
        if isinstance(handle, StdioRpcClient):
            return handle.is_alive
        if isinstance(handle, RemoteMcpClient):
            return await handle.probe()
        return True

    async def check_health(self) -> Dict[str, bool]:
        """Run one sweep over running servers. Unhealthy ones are marked Error, not restarted."""
        results: Dict[str, bool] = {}
        for instance in list(self._servers.values()):
            if instance.status != McpStatus.RUNNING:
                continue
            healthy = await self._is_healthy(instance)
            instance.last_health_check_at = datetime.now()
            results[instance.id] = healthy
            if not healthy and instance.status == McpStatus.RUNNING:
                instance.status = McpStatus.ERROR
                instance.error = "Health check failed"
                logger.warning(f"[{self.plugin_id}] MCP server '{instance.id}' failed health check")
                self._emit("server_unhealthy", instance)
        return results

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def _close_handle(self, instance: McpServerInstance) -> None:
        handle = instance.handle
        instance.handle = None
        if handle is None:
            return
        if isinstance(handle, StdioRpcClient):
            await handle.close(self.kill_grace_period)
        else:
            await handle.close()

    async def stop(self, server_id: str) -> None:
        """Stop one server. Unknown or already stopped ids are a no-op."""
        instance = self._servers.get(server_id)
        if instance is None:
            logger.debug(f"[{self.plugin_id}] MCP server '{server_id}' not found, nothing to stop")
            return

        task = self._restart_tasks.pop(server_id, None)
        if task is not None and not task.done():
            task.cancel()

        if instance.status == McpStatus.STOPPED:
            return

        instance.status = McpStatus.STOPPING
        try:
            await self._close_handle(instance)
        except Exception as e:
            logger.error(f"[{self.plugin_id}] Error stopping MCP server '{server_id}': {e}")
        instance.status = McpStatus.STOPPED
        logger.info(f"[{self.plugin_id}] Stopped MCP server '{server_id}'")
        self._emit("server_stopped", instance)

    async def stop_all(self) -> None:
        """Stop every tracked server in parallel."""
        if not self._servers:
            return
        results = await asyncio.gather(*(self.stop(sid) for sid in list(self._servers)), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"[{self.plugin_id}] Error during parallel stop: {result}")

    async def shutdown(self) -> None:
        """Stop health checks, pending restarts and all servers. No restarts happen afterwards."""
        self._shutting_down = True
        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
        for task in list(self._restart_tasks.values()):
            task.cancel()
        await self.stop_all()
        logger.info(f"[{self.plugin_id}] MCP process manager shut down")

    # ------------------------------------------------------------------
    # Tools and status
    # ------------------------------------------------------------------

    def _running(self, server_id: str) -> McpServerInstance:
        instance = self._servers.get(server_id)
        if instance is None:
            raise McpServerNotFound(f"MCP server '{server_id}' not found")
        if instance.status != McpStatus.RUNNING or instance.handle is None:
            raise McpServerNotFound(f"MCP server '{server_id}' is not running (status {instance.status.value})")
        return instance

    async def list_tools(self, server_id: str, refresh: bool = False) -> List[ToolDefinition]:
        instance = self._running(server_id)
        if refresh:
            instance.tools = await instance.handle.list_tools()
        return list(instance.tools)

    async def call_tool(
        self,
        server_id: str,
        name: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Any:
        instance = self._running(server_id)
        return await instance.handle.call_tool(name, arguments, timeout=timeout)

    def is_running(self, server_id: str) -> bool:
        instance = self._servers.get(server_id)
        return instance is not None and instance.status == McpStatus.RUNNING

    def has(self, server_id: str) -> bool:
        return server_id in self._servers

    def get_status(self, server_id: str) -> Optional[Dict[str, Any]]:
        instance = self._servers.get(server_id)
        return instance.to_dict() if instance else None

    def list_servers(self) -> List[Dict[str, Any]]:
        return [i.to_dict() for i in self._servers.values()]

    def server_ids(self) -> List[str]:
        return list(self._servers)

    def cached_tools(self) -> Dict[str, List[ToolDefinition]]:
        """Tools reported by running servers, keyed by server id."""
        return {
            sid: list(i.tools)
            for sid, i in self._servers.items()
            if i.status == McpStatus.RUNNING
        }

    def find_server_for_tool(self, tool_name: str) -> Optional[str]:
        for sid, tools in self.cached_tools().items():
            if any(t.name == tool_name for t in tools):
                return sid
        return None
