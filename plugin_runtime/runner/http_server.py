"""Worker HTTP transport: health, metadata, plugin routes and tool calls."""

import inspect
import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from plugin_runtime.plugins.manager import PluginHost
from plugin_runtime.plugins.registrations import RegisteredRoute
from plugin_runtime.tools.bridge import ToolCallRequest, ToolExecutionBridge

logger = logging.getLogger(__name__)


class CallToolBody(BaseModel):
    """Request body for /mcp/call-tool. ``name`` may be bare or qualified."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    arguments: dict = Field(default_factory=dict)
    conversation_id: str = Field(..., alias="conversationId")
    turn: Optional[int] = None
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")


def _wrap_route(host: PluginHost, route: RegisteredRoute) -> Callable:
    async def endpoint(request: Request):
        try:
            result = route.handler(request)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"[{host.id}] Route {route.method} {route.path} failed: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        if isinstance(result, Response):
            return result
        return JSONResponse(content=result if result is not None else {})

    endpoint.__name__ = f"{route.method.lower()}_{route.path.strip('/').replace('/', '_') or 'root'}"
    return endpoint


def create_http_app(host: PluginHost, org_id: str, bridge: Optional[ToolExecutionBridge] = None) -> FastAPI:
    """Build the worker app for an initialized host."""
    app = FastAPI(title=f"Plugin worker: {host.manifest.display_name}", version=host.manifest.version)

    @app.get("/health")
    async def health():
        instance = host.registry.get(org_id)
        return {
            "status": "ok",
            "plugin": host.id,
            "org": org_id,
            "org_status": instance.status.value if instance else None,
        }

    @app.get("/metadata")
    async def metadata():
        return host.metadata(org_id)

    @app.get("/mcp/list-tools")
    async def list_tools():
        return {"tools": [t.to_dict() for t in host.tool_catalog(org_id).values()]}

    if bridge is not None:
        @app.post("/mcp/call-tool")
        async def call_tool(body: CallToolBody):
            # Tool names may contain ':'
            prefix = f"{host.id}:"
            name = body.name if body.name.startswith(prefix) else prefix + body.name
            result = await bridge.execute(
                ToolCallRequest(
                    qualified_name=name,
                    arguments=body.arguments,
                    org_id=org_id,
                    conversation_id=body.conversation_id,
                    turn=body.turn,
                    idempotency_key=body.idempotency_key,
                )
            )
            return result.model_dump()

    for route in host.registrations.get_routes():
        app.add_api_route(route.path, _wrap_route(host, route), methods=[route.method])
        logger.info(f"[{host.id}] Mounted plugin route {route.method} {route.path}")

    return app
