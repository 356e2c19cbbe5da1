"""Plugin management REST API endpoints."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from plugin_runtime.dependencies import get_plugin_manager, get_tool_bridge, get_tool_log
from plugin_runtime.errors import (
    CapabilityError,
    ConfigDeniedError,
    LifecycleError,
    ManifestError,
    PluginRuntimeError,
    RegistrationError,
)
from plugin_runtime.plugins.manager import PluginHost
from plugin_runtime.tools.bridge import ToolCallRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins", tags=["plugins"])


class PluginInstallRequest(BaseModel):
    """Request body for installing a plugin from local path."""

    path: str


class OrgEnableRequest(BaseModel):
    name: Optional[str] = None


class OrgConfigUpdate(BaseModel):
    """Request body for updating organization config. A null value clears a field."""

    config: Dict[str, Any]


class OrgAuthUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    method_id: str = Field(..., alias="methodId")
    credentials: Dict[str, Any]


def _get_host(plugin_id: str) -> PluginHost:
    host = get_plugin_manager().get_host(plugin_id)
    if host is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' not found")
    if not host.initialized:
        raise HTTPException(status_code=400, detail=f"Plugin '{plugin_id}' is not initialized: {host.error}")
    return host


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, (CapabilityError, ConfigDeniedError)):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.get("/")
async def list_plugins():
    """List all discovered plugins and their status."""
    return {"plugins": get_plugin_manager().list_plugins()}


@router.post("/install")
async def install_plugin(body: PluginInstallRequest):
    """Install a plugin from a local path. Organizations enable it afterwards."""
    source_path = Path(body.path)
    if not source_path.exists():
        raise HTTPException(status_code=400, detail=f"Path does not exist: {body.path}")
    if not source_path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {body.path}")

    manager = get_plugin_manager()
    try:
        host = manager.install_plugin(source_path)
        await host.initialize()
    except ManifestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PluginRuntimeError as e:
        logger.error(f"Installed plugin from {source_path} failed to initialize: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to initialize plugin: {e}")
    return {"message": f"Plugin '{host.id}' installed", "plugin": host.to_dict()}


@router.post("/tools/call")
async def call_tool(body: ToolCallRequest):
    """Run a qualified tool call. Failures come back as results, not HTTP errors."""
    result = await get_tool_bridge().execute(body)
    return result.model_dump()


@router.get("/tools/log/{conversation_id}")
async def get_tool_log_entries(conversation_id: str):
    """Read the tool log of a conversation."""
    try:
        entries = get_tool_log().read(conversation_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"conversation_id": conversation_id, "entries": [e.to_dict() for e in entries]}


@router.get("/{plugin_id}")
async def get_plugin(plugin_id: str):
    """Get detailed information about a specific plugin."""
    info = get_plugin_manager().get_plugin_info(plugin_id)
    if not info:
        raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' not found")
    return info


@router.get("/{plugin_id}/metadata")
async def get_plugin_metadata(plugin_id: str, org_id: Optional[str] = None):
    return _get_host(plugin_id).metadata(org_id)


@router.get("/{plugin_id}/orgs/{org_id}")
async def get_org(plugin_id: str, org_id: str):
    host = _get_host(plugin_id)
    info = host.org_info(org_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' is not running for organization '{org_id}'")
    return info


@router.post("/{plugin_id}/orgs/{org_id}/enable")
async def enable_org(plugin_id: str, org_id: str, body: Optional[OrgEnableRequest] = None):
    """Enable a plugin for an organization. A failing on_start leaves it Degraded."""
    host = _get_host(plugin_id)
    try:
        instance = await host.enable_org(org_id, name=body.name if body else None)
    except LifecycleError as e:
        raise _http_error(e)
    return {
        "message": f"Plugin '{plugin_id}' enabled for organization '{org_id}'",
        "org": instance.to_dict(host.sensitive_fields()),
    }


@router.post("/{plugin_id}/orgs/{org_id}/disable")
async def disable_org(plugin_id: str, org_id: str):
    host = _get_host(plugin_id)
    try:
        instance = await host.disable_org(org_id)
    except LifecycleError as e:
        raise _http_error(e)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"Plugin '{plugin_id}' is not running for organization '{org_id}'")
    return {"message": f"Plugin '{plugin_id}' disabled for organization '{org_id}'", "status": instance.status.value}


@router.put("/{plugin_id}/orgs/{org_id}/config")
async def update_org_config(plugin_id: str, org_id: str, body: OrgConfigUpdate):
    """Update config values. Runs on_config_update and restarts the organization if enabled."""
    host = _get_host(plugin_id)
    try:
        instance = await host.update_config(org_id, body.config)
    except (RegistrationError, LifecycleError) as e:
        raise _http_error(e)
    return {
        "message": f"Configuration updated for plugin '{plugin_id}', organization '{org_id}'",
        "org": instance.to_dict(host.sensitive_fields()) if instance else None,
    }


@router.put("/{plugin_id}/orgs/{org_id}/auth")
async def save_org_auth(plugin_id: str, org_id: str, body: OrgAuthUpdate):
    """Validate and store auth. Invalid auth is not stored and marks the organization Degraded."""
    host = _get_host(plugin_id)
    valid, instance = await host.save_auth(org_id, {"methodId": body.method_id, "credentials": body.credentials})
    return {
        "valid": valid,
        "org": instance.to_dict(host.sensitive_fields()) if instance else None,
    }
