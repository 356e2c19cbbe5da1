"""Hook contexts handed to plugin code.

The global context exists once per process and carries no organization data.
Runtime contexts are built per organization and carry resolved config/auth.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from plugin_runtime.plugins.auth_runtime import AuthRuntime, AuthState
from plugin_runtime.plugins.config_runtime import ConfigRuntime
from plugin_runtime.plugins.manifest import PluginManifest
from plugin_runtime.plugins.registrations import ConfigDescriptorAPI, RegisterAPI

if TYPE_CHECKING:
    from plugin_runtime.mcp.runtime import McpRuntime
    from plugin_runtime.plugins.api import PlatformAPI


class PluginLoggerAdapter(logging.LoggerAdapter):
    """Adds plugin_id / org_id to every record, keeping caller-supplied extras."""

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_plugin_logger(
    plugin_id: str,
    org_id: Optional[str] = None,
    server_id: Optional[str] = None,
) -> PluginLoggerAdapter:
    """Logger scoped as plugin.<id>[.org.<org>][.mcp.<server>]."""
    name = f"plugin.{plugin_id}"
    if org_id:
        name += f".org.{org_id}"
    if server_id:
        name += f".mcp.{server_id}"
    return PluginLoggerAdapter(logging.getLogger(name), {"plugin_id": plugin_id, "org_id": org_id})


@dataclass(frozen=True)
class Org:
    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass
class GlobalContext:
    """Descriptor-phase context passed to on_initialize (and plugin factories)."""

    manifest: PluginManifest
    register: RegisterAPI
    config: ConfigDescriptorAPI
    logger: logging.LoggerAdapter

    @property
    def capabilities(self) -> List[str]:
        return sorted(self.manifest.capabilities)


@dataclass
class StartContext:
    org: Org
    config: ConfigRuntime
    auth: AuthRuntime
    mcp: "McpRuntime"
    logger: logging.LoggerAdapter
    platform: Optional["PlatformAPI"] = None


@dataclass
class AuthValidationContext:
    """Context for on_validate_auth; ``auth`` is the candidate state being saved."""

    org: Org
    config: ConfigRuntime
    auth: Optional[AuthState]
    logger: logging.LoggerAdapter


@dataclass
class ConfigUpdateContext:
    org: Org
    config: ConfigRuntime
    logger: logging.LoggerAdapter
    changed: List[str] = field(default_factory=list)
    previous: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class DisableContext:
    org: Org
    logger: logging.LoggerAdapter
    mcp: Optional["McpRuntime"] = None
