"""MCP API exposed to runtime-phase hooks."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from plugin_runtime.errors import CapabilityError
from plugin_runtime.mcp.manager import McpProcessManager
from plugin_runtime.mcp.types import ExternalServerOptions, StdioServerOptions
from plugin_runtime.plugins.auth_runtime import AuthRuntime
from plugin_runtime.plugins.config_runtime import ConfigRuntime
from plugin_runtime.plugins.contexts import get_plugin_logger
from plugin_runtime.plugins.manifest import PluginManifest


@dataclass
class McpInitializerContext:
    """What a ``start_local`` initializer receives."""

    config: ConfigRuntime
    auth: AuthRuntime
    logger: logging.LoggerAdapter


class McpRuntime:
    """Thin, capability-checked facade over the organization's process manager.

    Hooks never see server handles; they get status dicts back.
    """

    def __init__(
        self,
        manager: McpProcessManager,
        manifest: PluginManifest,
        config: ConfigRuntime,
        auth: AuthRuntime,
    ):
        self._manager = manager
        self._manifest = manifest
        self._config = config
        self._auth = auth

    def _require(self) -> None:
        if not self._manifest.has_capability("mcp"):
            raise CapabilityError("mcp", self._manifest.id)

    async def start_local(self, id: str, initializer: Callable[[McpInitializerContext], Any]) -> Dict[str, Any]:
        self._require()
        ctx = McpInitializerContext(
            config=self._config,
            auth=self._auth,
            logger=get_plugin_logger(self._manifest.id, self._manager.org_id, id),
        )
        return await self._manager.start_local(id, initializer, ctx)

    async def start_local_stdio(self, options: Union[StdioServerOptions, Dict[str, Any]]) -> Dict[str, Any]:
        """Start a stdio server.

        Args:
            options: id, command, args, workingDir (relative to the plugin root),
                env (merged over the inherited environment), timeout
        """
        self._require()
        return await self._manager.start_local_stdio(options)

    async def start_external(self, options: Union[ExternalServerOptions, Dict[str, Any]]) -> Dict[str, Any]:
        self._require()
        return await self._manager.start_external(options)

    async def stop(self, id: str) -> None:
        self._require()
        await self._manager.stop(id)

    def status(self, id: Optional[str] = None) -> Union[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        if id is None:
            return self._manager.list_servers()
        return self._manager.get_status(id)
