"""Plugin system: manifest, loader, hooks, config/auth resolution and hosting.

Imports are lazy to avoid pulling in the MCP and HTTP stack when only
lightweight components like load_manifest or PluginDiscovery are needed.
"""

__all__ = [
    "PluginManifest",
    "load_manifest",
    "PluginDefinition",
    "define_plugin",
    "PluginDiscovery",
    "PluginHost",
    "PluginManager",
    "OrgStateStore",
    "OrganizationRegistry",
    "OrganizationInstance",
    "OrgStatus",
    "ConfigRuntime",
    "AuthRuntime",
    "AuthState",
    "PlatformAPI",
]


def __getattr__(name):
    if name in ("PluginManifest", "load_manifest"):
        from plugin_runtime.plugins import manifest
        return getattr(manifest, name)
    if name in ("PluginDefinition", "define_plugin"):
        from plugin_runtime.plugins import loader
        return getattr(loader, name)
    if name == "PluginDiscovery":
        from plugin_runtime.plugins.discovery import PluginDiscovery
        return PluginDiscovery
    if name in ("PluginHost", "PluginManager"):
        from plugin_runtime.plugins import manager
        return getattr(manager, name)
    if name == "OrgStateStore":
        from plugin_runtime.plugins.store import OrgStateStore
        return OrgStateStore
    if name in ("OrganizationRegistry", "OrganizationInstance", "OrgStatus"):
        from plugin_runtime.plugins import registry
        return getattr(registry, name)
    if name == "ConfigRuntime":
        from plugin_runtime.plugins.config_runtime import ConfigRuntime
        return ConfigRuntime
    if name in ("AuthRuntime", "AuthState"):
        from plugin_runtime.plugins import auth_runtime
        return getattr(auth_runtime, name)
    if name == "PlatformAPI":
        from plugin_runtime.plugins.api import PlatformAPI
        return PlatformAPI
    raise AttributeError(f"module 'plugin_runtime.plugins' has no attribute {name!r}")
