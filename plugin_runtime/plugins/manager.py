"""Plugin host and plugin manager.

``PluginHost`` runs one plugin: the one-time descriptor phase and the
per-organization runtime phase. ``PluginManager`` is the platform-side
orchestrator that discovers plugins and keeps one host per plugin.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from plugin_runtime.errors import (
    ConfigDeniedError,
    LoadError,
    ManifestError,
    McpStartError,
    PluginRuntimeError,
    RegistrationError,
    ToolUnavailable,
)
from plugin_runtime.mcp.manager import McpProcessManager
from plugin_runtime.mcp.runtime import McpRuntime
from plugin_runtime.mcp.types import ToolDefinition
from plugin_runtime.observers import ObserverRegistry
from plugin_runtime.plugins.api import PlatformAPI, granted_capabilities
from plugin_runtime.plugins.auth_runtime import AuthRuntime, AuthState
from plugin_runtime.plugins.config_runtime import ConfigRuntime
from plugin_runtime.plugins.contexts import (
    AuthValidationContext,
    ConfigUpdateContext,
    DisableContext,
    GlobalContext,
    Org,
    StartContext,
    get_plugin_logger,
)
from plugin_runtime.plugins.discovery import PluginDiscovery, PluginPackage
from plugin_runtime.plugins.hooks import HookExecutor
from plugin_runtime.plugins.lifecycle import OrganizationLifecycle
from plugin_runtime.plugins.loader import PluginDefinition, load_export, resolve_definition
from plugin_runtime.plugins.manifest import PluginManifest
from plugin_runtime.plugins.registrations import ConfigDescriptorAPI, RegisterAPI, RegistrationStore
from plugin_runtime.plugins.registry import OrganizationInstance, OrganizationRegistry, OrgStatus
from plugin_runtime.plugins.store import OrgStateStore

logger = logging.getLogger(__name__)


class PluginHost:
    """Runs one plugin for any number of organizations.

    Each organization gets its own McpProcessManager, so no two
    organizations share a process or connection.
    """

    def __init__(
        self,
        manifest: PluginManifest,
        store: OrgStateStore,
        source: str = "bundled",
        mcp_options: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        platform_api: bool = True,
    ):
        self.manifest = manifest
        self.store = store
        self.source = source
        self.mcp_options = dict(mcp_options or {})
        self.environ = environ
        self.platform_api = platform_api

        self.registrations = RegistrationStore()
        self.registry = OrganizationRegistry()
        self.lifecycle = OrganizationLifecycle(manifest.id)
        self.observers: ObserverRegistry = self.lifecycle.observers
        self.definition: Optional[PluginDefinition] = None
        self.executor: Optional[HookExecutor] = None
        self.error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.manifest.id

    @property
    def initialized(self) -> bool:
        return self.executor is not None and self.registrations.frozen

    # ------------------------------------------------------------------
    # Descriptor phase
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the entry file and run on_initialize once.

        Raises:
            LoadError: import failure, missing export or invalid definition
            HookFailure: on_initialize raised; the worker must abort
        """
        if self.initialized:
            return
        log = get_plugin_logger(self.id)
        ctx = GlobalContext(
            manifest=self.manifest,
            register=RegisterAPI(self.registrations, self.manifest, log),
            config=ConfigDescriptorAPI(self.registrations),
            logger=log,
        )
        try:
            export = load_export(self.manifest)
            self.definition = resolve_definition(export, ctx)
            executor = HookExecutor(self.definition, self.id)
            await executor.initialize(ctx)
        except PluginRuntimeError as e:
            self.error = str(e)
            raise
        self.registrations.freeze()
        self.executor = executor
        self.error = None
        logger.info(f"Plugin '{self.id}' initialized with hooks {self.definition.hooks}")

    def _require_initialized(self) -> HookExecutor:
        if self.executor is None:
            raise LoadError(f"Plugin '{self.id}' is not initialized")
        return self.executor

    # ------------------------------------------------------------------
    # Runtime helpers
    # ------------------------------------------------------------------

    def _org(self, org_id: str) -> Org:
        record = self.store.get_org(self.id, org_id) or {}
        return Org(id=org_id, name=record.get("name") or f"Org {org_id}")

    def config_runtime(self, org_id: str) -> ConfigRuntime:
        return ConfigRuntime(
            self.store.get_config(self.id, org_id),
            self.registrations,
            self.manifest,
            logger=get_plugin_logger(self.id, org_id),
            environ=self.environ,
        )

    def auth_runtime(self, org_id: str, auth: Optional[Any] = None) -> AuthRuntime:
        state = auth if auth is not None else self.store.get_auth(self.id, org_id)
        return AuthRuntime(state, self.registrations, logger=get_plugin_logger(self.id, org_id))

    def _new_mcp_manager(self, org_id: str) -> McpProcessManager:
        manager = McpProcessManager(self.id, self.manifest.root, org_id=org_id, **self.mcp_options)
        manager.observers.add(lambda event, payload: self.observers.emit(event, **payload))
        return manager

    def _platform(self, org_id: str) -> Optional[PlatformAPI]:
        if not self.platform_api:
            return None
        return PlatformAPI(
            self.id,
            granted_capabilities(self.manifest.capabilities, self.manifest.category),
            org_id=org_id,
        )

    def sensitive_fields(self) -> set:
        return {name for name, d in self.registrations.get_config_schema().items() if d.sensitive}

    # ------------------------------------------------------------------
    # Runtime phase
    # ------------------------------------------------------------------

    async def enable_org(self, org_id: str, name: Optional[str] = None) -> OrganizationInstance:
        self.store.set_enabled(self.id, org_id, True, name=name)
        return await self.start_org(org_id)

    async def start_org(self, org_id: str) -> OrganizationInstance:
        """Start (or restart) an organization. Serialized per organization."""
        async with self.lifecycle.lock(org_id):
            return await self._start_locked(org_id)

    async def _start_locked(self, org_id: str) -> OrganizationInstance:
        executor = self._require_initialized()
        org = self._org(org_id)

        instance = self.registry.get(org_id)
        if instance is None:
            instance = OrganizationInstance(org=org)
            self.registry.register(instance)
        else:
            instance.org = org
            if instance.mcp is not None:
                # Pre-restart: servers of the previous run are stopped first
                await instance.mcp.stop_all()

        self.lifecycle.transition(instance, OrgStatus.STARTING)
        if instance.mcp is None:
            instance.mcp = self._new_mcp_manager(org_id)

        config = self.config_runtime(org_id)
        auth = self.auth_runtime(org_id)
        instance.config_snapshot = config.snapshot()
        instance.auth_snapshot = auth.get()
        log = get_plugin_logger(self.id, org_id)

        failures: List[str] = []
        for server in self.manifest.mcp_servers:
            try:
                await instance.mcp.start_local_stdio(server)
            except McpStartError as e:
                failures.append(str(e))

        ctx = StartContext(
            org=org,
            config=config,
            auth=auth,
            mcp=McpRuntime(instance.mcp, self.manifest, config, auth),
            logger=log,
            platform=self._platform(org_id),
        )
        ok, error = await executor.start(ctx)
        if not ok:
            failures.insert(0, error or "on_start failed")
        instance.server_ids = set(instance.mcp.server_ids())

        if failures:
            self.lifecycle.transition(
                instance, OrgStatus.DEGRADED, reason="not fully configured", error="; ".join(failures)
            )
        else:
            self.lifecycle.transition(instance, OrgStatus.RUNNING)
        return instance

    async def disable_org(self, org_id: str) -> Optional[OrganizationInstance]:
        """Run on_disable, stop all MCP servers of the organization and drop its instance."""
        async with self.lifecycle.lock(org_id):
            self.store.set_enabled(self.id, org_id, False)
            instance = self.registry.get(org_id)
            if instance is None:
                return None

            self.lifecycle.transition(instance, OrgStatus.DISABLING)
            try:
                if self.executor is not None:
                    mcp = McpRuntime(instance.mcp, self.manifest, self.config_runtime(org_id), self.auth_runtime(org_id)) if instance.mcp else None
                    await self.executor.disable(
                        DisableContext(org=instance.org, logger=get_plugin_logger(self.id, org_id), mcp=mcp)
                    )
            finally:
                if instance.mcp is not None:
                    await instance.mcp.shutdown()
            instance.server_ids = set()
            self.lifecycle.transition(instance, OrgStatus.DISABLED)
            self.registry.remove(org_id)
            return instance

    async def update_config(self, org_id: str, values: Dict[str, Any]) -> Optional[OrganizationInstance]:
        """Store new config values, run on_config_update, restart the organization if enabled.

        Raises:
            RegistrationError: for keys that are not registered config fields
        """
        executor = self._require_initialized()
        unknown = [k for k in values if not self.registrations.has_config_field(k)]
        if unknown:
            raise RegistrationError(f"Unknown config field(s): {', '.join(sorted(unknown))}")

        previous = self.config_runtime(org_id).snapshot()
        self.store.update_config(self.id, org_id, values)
        config = self.config_runtime(org_id)
        await executor.config_update(
            ConfigUpdateContext(
                org=self._org(org_id),
                config=config,
                logger=get_plugin_logger(self.id, org_id),
                changed=sorted(values),
                previous=previous,
            )
        )
        if self.store.is_enabled(self.id, org_id):
            return await self.start_org(org_id)
        return self.registry.get(org_id)

    async def save_auth(self, org_id: str, auth: Dict[str, Any]) -> Tuple[bool, Optional[OrganizationInstance]]:
        """Validate candidate auth with on_validate_auth, then store it and restart.

        Invalid auth is not stored; a running organization is marked Degraded
        with reason ``auth failed``.
        """
        executor = self._require_initialized()
        candidate = self.auth_runtime(org_id, auth).get()
        valid = False
        if candidate is not None:
            valid = await executor.validate_auth(
                AuthValidationContext(
                    org=self._org(org_id),
                    config=self.config_runtime(org_id),
                    auth=candidate,
                    logger=get_plugin_logger(self.id, org_id),
                )
            )

        if not valid:
            async with self.lifecycle.lock(org_id):
                instance = self.registry.get(org_id)
                if instance is not None and instance.status in (OrgStatus.RUNNING, OrgStatus.STARTING):
                    self.lifecycle.transition(instance, OrgStatus.DEGRADED, reason="auth failed")
                elif instance is not None and instance.status == OrgStatus.DEGRADED:
                    instance.reason = "auth failed"
            logger.warning(f"Auth validation failed for plugin {self.id}, org {org_id}")
            return False, self.registry.get(org_id)

        self.store.save_auth(self.id, org_id, auth)
        if self.store.is_enabled(self.id, org_id):
            return True, await self.start_org(org_id)
        return True, self.registry.get(org_id)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def tool_catalog(self, org_id: Optional[str] = None) -> Dict[str, ToolDefinition]:
        """Tools of the plugin: server-listed tools overlaid by manifest declarations."""
        catalog: Dict[str, ToolDefinition] = {}
        instance = self.registry.get(org_id) if org_id else None
        if instance is not None and instance.mcp is not None:
            for tools in instance.mcp.cached_tools().values():
                for tool in tools:
                    catalog.setdefault(tool.name, tool)
        catalog.update({t.name: t for t in self.manifest.tools})
        return catalog

    def _server_for_tool(self, mcp: McpProcessManager, tool_name: str) -> Optional[str]:
        server_id = mcp.find_server_for_tool(tool_name)
        if server_id is not None:
            return server_id
        running = [sid for sid in mcp.server_ids() if mcp.is_running(sid)]
        if len(running) == 1:
            return running[0]
        return None

    async def ensure_tool_server(self, org_id: str, tool_name: str) -> Tuple[McpProcessManager, str]:
        """Return the manager and server id serving ``tool_name``, starting servers on demand.

        Raises:
            ToolUnavailable: organization not enabled or no server can serve the tool
            McpStartError: an on-demand start failed
        """
        instance = self.registry.get(org_id)
        if instance is None:
            if not self.store.is_enabled(self.id, org_id):
                raise ToolUnavailable(f"Plugin '{self.id}' is not enabled for organization '{org_id}'")
            instance = await self.start_org(org_id)
        if instance.status in (OrgStatus.DISABLING, OrgStatus.DISABLED) or instance.mcp is None:
            raise ToolUnavailable(f"Plugin '{self.id}' is not enabled for organization '{org_id}'")

        server_id = self._server_for_tool(instance.mcp, tool_name)
        if server_id is not None:
            return instance.mcp, server_id

        async with self.lifecycle.lock(org_id):
            for server in self.manifest.mcp_servers:
                if not instance.mcp.is_running(server.id):
                    logger.info(f"Starting MCP server '{server.id}' of plugin {self.id} on demand for org {org_id}")
                    await instance.mcp.start_local_stdio(server)
                    instance.server_ids.add(server.id)

        server_id = self._server_for_tool(instance.mcp, tool_name)
        if server_id is None and len(self.manifest.mcp_servers) == 1:
            server_id = self.manifest.mcp_servers[0].id
        if server_id is None:
            raise ToolUnavailable(f"No running MCP server of plugin '{self.id}' serves tool '{tool_name}'")
        return instance.mcp, server_id

    # ------------------------------------------------------------------
    # Introspection and teardown
    # ------------------------------------------------------------------

    def metadata(self, org_id: Optional[str] = None) -> Dict[str, Any]:
        instance = self.registry.get(org_id) if org_id else None
        data = {
            "id": self.id,
            "name": self.manifest.display_name,
            "version": self.manifest.version,
            "category": self.manifest.category,
            "capabilities": sorted(self.manifest.capabilities),
            **self.registrations.to_metadata(),
            "mcp": {
                "servers": instance.mcp.list_servers() if instance and instance.mcp else [],
                "tools": [t.to_dict() for t in self.tool_catalog(org_id).values()],
            },
        }
        if org_id:
            try:
                data["config"] = self.config_runtime(org_id).resolve_all(mask_secrets=True)
            except ConfigDeniedError as e:
                data["config"] = {"error": str(e)}
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.manifest.to_dict(),
            "source": self.source,
            "initialized": self.initialized,
            "error": self.error,
            "orgs": {i.org_id: i.status.value for i in self.registry.get_all()},
        }

    def org_info(self, org_id: str) -> Optional[Dict[str, Any]]:
        instance = self.registry.get(org_id)
        if instance is None:
            return None
        return instance.to_dict(self.sensitive_fields())

    async def shutdown(self) -> None:
        """Stop every organization's MCP servers in parallel."""
        managers = [i.mcp for i in self.registry.get_all() if i.mcp is not None]
        results = await asyncio.gather(*(m.shutdown() for m in managers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error shutting down plugin {self.id}: {result}")
        logger.info(f"Plugin host '{self.id}' shut down")


class PluginManager:
    """Top-level plugin system orchestrator.

    Coordinates discovery, host creation, organization enablement and install.
    """

    def __init__(
        self,
        bundled_dir: Path,
        installed_dir: Path,
        state_file: Optional[Path],
        extra_paths: Optional[List[Path]] = None,
        mcp_options: Optional[Dict[str, Any]] = None,
    ):
        self.bundled_dir = bundled_dir
        self.installed_dir = installed_dir
        self.store = OrgStateStore(state_file)
        self.mcp_options = mcp_options
        self.hosts: Dict[str, PluginHost] = {}

        # (path, source_label), searched in order
        search_paths = [
            (bundled_dir, "bundled"),
            (installed_dir, "installed"),
        ]
        for p in extra_paths or []:
            search_paths.append((p, "external"))
        self.discovery = PluginDiscovery(search_paths)

    def _add_host(self, package: PluginPackage) -> PluginHost:
        host = PluginHost(package.manifest, self.store, source=package.source, mcp_options=self.mcp_options)
        self.hosts[host.id] = host
        return host

    async def load_all(self) -> None:
        """Discover and initialize every plugin, then start enabled organizations."""
        for package in self.discovery.discover_all():
            self._add_host(package)

        for host in list(self.hosts.values()):
            try:
                await host.initialize()
            except PluginRuntimeError as e:
                logger.error(f"Plugin '{host.id}' failed to initialize: {e}")
                continue
            for org_id in self.store.get_enabled_orgs(host.id):
                await host.start_org(org_id)

        ready = [h for h in self.hosts.values() if h.initialized]
        logger.info(f"Plugin system initialized, {len(ready)}/{len(self.hosts)} plugins ready")

    async def stop_all(self) -> None:
        await asyncio.gather(*(h.shutdown() for h in self.hosts.values()), return_exceptions=True)
        logger.info("All plugins stopped")

    def get_host(self, plugin_id: str) -> Optional[PluginHost]:
        return self.hosts.get(plugin_id)

    def list_plugins(self) -> List[dict]:
        return [h.to_dict() for h in self.hosts.values()]

    def get_plugin_info(self, plugin_id: str) -> Optional[dict]:
        host = self.hosts.get(plugin_id)
        if host is None:
            return None
        info = host.to_dict()
        info["metadata"] = host.metadata() if host.initialized else None
        return info

    def install_plugin(self, source_path: Path) -> PluginHost:
        """Copy a validated plugin directory into the installed directory.

        Raises:
            ManifestError: the source is not a valid plugin, or a plugin with
                the same id or destination already exists
        """
        package = self.discovery.discover_single(source_path, "installed")
        if package.id in self.hosts:
            raise ManifestError(f"Plugin '{package.id}' already exists")

        dest = self.installed_dir / package.id
        if dest.exists():
            raise ManifestError(f"Plugin directory already exists: {dest}")

        self.installed_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source_path, dest)
        logger.info(f"Installed plugin '{package.id}' to {dest}")

        return self._add_host(self.discovery.discover_single(dest, "installed"))
