"""Tool execution bridge - dispatches qualified tool calls to MCP servers.

Flow for ``"{plugin_id}:{tool_name}"``:
    1. split on the last colon
    2. resolve plugin and tool in the catalog, else ToolNotFound
    3. validate arguments, else ToolValidationError (no process is touched)
    4. make sure the serving instance runs, else ToolUnavailable
    5. send tools/call and wait, ToolTimeout on expiry
Every outcome is appended to the conversation's tool log.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from plugin_runtime.errors import (
    McpServerNotFound,
    PluginRuntimeError,
    ProcessExitError,
    RpcError,
    ToolCallError,
    ToolExecutionError,
    ToolNotFound,
    ToolTimeout,
    ToolUnavailable,
    ToolValidationError,
)
from plugin_runtime.tools.tool_log import ToolLog, ToolLogEntry
from plugin_runtime.tools.validation import validate_tool_arguments

if TYPE_CHECKING:
    from plugin_runtime.plugins.manager import PluginHost

logger = logging.getLogger(__name__)


class ToolCallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qualified_name: str = Field(..., alias="qualifiedName")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    org_id: str = Field(..., alias="orgId")
    conversation_id: str = Field(..., alias="conversationId")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    turn: Optional[int] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class ToolCallResult(BaseModel):
    ok: bool
    result: Any = None
    error_class: Optional[str] = None
    message: Optional[str] = None
    latency_ms: int = 0
    correlation_id: str


def split_qualified_name(qualified_name: str) -> Tuple[str, str]:
    """Split ``plugin:tool`` on the last colon."""
    index = qualified_name.rfind(":")
    if index <= 0 or index == len(qualified_name) - 1:
        raise ToolNotFound(
            f"Invalid tool name format: {qualified_name}. Expected format: {{pluginId}}:{{toolName}}"
        )
    return qualified_name[:index], qualified_name[index + 1:]


def _error_text(result: Dict[str, Any]) -> str:
    parts = [c.get("text", "") for c in result.get("content", []) if isinstance(c, dict)]
    return " ".join(p for p in parts if p) or "Tool reported an error"


class ToolExecutionBridge:
    """Used by the orchestrator to run tool calls against plugin MCP servers."""

    def __init__(self, hosts: Mapping[str, "PluginHost"], tool_log: ToolLog, timeout: Optional[float] = None):
        """
        Args:
            hosts: Live mapping of plugin id -> PluginHost
            tool_log: Append-only log receiving every outcome
            timeout: Default per-call timeout; falls back to the server's RPC timeout
        """
        self.hosts = hosts
        self.tool_log = tool_log
        self.timeout = timeout

    def available_tools(self, org_id: str, plugin_id: Optional[str] = None) -> List[str]:
        """Qualified tool names visible to an organization."""
        names = []
        for pid, host in self.hosts.items():
            if plugin_id is not None and pid != plugin_id:
                continue
            names.extend(f"{pid}:{name}" for name in host.tool_catalog(org_id))
        return sorted(names)

    async def execute(self, request: ToolCallRequest) -> ToolCallResult:
        correlation_id = request.correlation_id or str(uuid.uuid4())
        started = time.monotonic()
        ok, result, error = False, None, None

        try:
            result = await self._dispatch(request)
            ok = True
        except ToolCallError as e:
            error = e
        except PluginRuntimeError as e:
            error = ToolExecutionError(str(e))
        except Exception as e:
            logger.error(f"Unexpected error executing tool {request.qualified_name}: {e}", exc_info=True)
            error = ToolExecutionError(f"{type(e).__name__}: {e}")

        latency_ms = int((time.monotonic() - started) * 1000)
        outcome = ToolCallResult(
            ok=ok,
            result=result,
            error_class=error.error_class if error else None,
            message=str(error) if error else None,
            latency_ms=latency_ms,
            correlation_id=correlation_id,
        )
        self._record(request, outcome)

        if ok:
            logger.info(f"Tool {request.qualified_name} succeeded in {latency_ms}ms ({correlation_id})")
        else:
            logger.warning(f"Tool {request.qualified_name} failed: {outcome.error_class}: {outcome.message}")
        return outcome

    async def _dispatch(self, request: ToolCallRequest) -> Any:
        plugin_id, tool_name = split_qualified_name(request.qualified_name)

        host = self.hosts.get(plugin_id)
        if host is None:
            raise ToolNotFound(f"Plugin '{plugin_id}' not found", self.available_tools(request.org_id))

        catalog = host.tool_catalog(request.org_id)
        tool = catalog.get(tool_name)
        if tool is None:
            raise ToolNotFound(
                f"Tool '{tool_name}' not found in plugin '{plugin_id}'",
                [f"{plugin_id}:{name}" for name in catalog],
            )

        errors = validate_tool_arguments(request.arguments, tool.input_schema)
        if errors:
            raise ToolValidationError(errors)

        try:
            manager, server_id = await host.ensure_tool_server(request.org_id, tool_name)
        except ToolCallError:
            raise
        except PluginRuntimeError as e:
            raise ToolUnavailable(f"Plugin process not available: {e}") from e

        timeout = request.timeout or self.timeout
        try:
            raw = await manager.call_tool(server_id, tool_name, request.arguments, timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolTimeout(f"Tool '{request.qualified_name}' timed out")
        except RpcError as e:
            raise ToolExecutionError(f"MCP tool error: {e}") from e
        except (ProcessExitError, McpServerNotFound) as e:
            raise ToolUnavailable(f"Plugin process not available: {e}") from e

        if isinstance(raw, dict) and raw.get("isError"):
            raise ToolExecutionError(f"MCP tool error: {_error_text(raw)}")
        return raw

    def _record(self, request: ToolCallRequest, outcome: ToolCallResult) -> None:
        conversation_id = request.conversation_id
        entry = ToolLogEntry(
            turn=request.turn if request.turn is not None else self.tool_log.next_turn(conversation_id),
            name=request.qualified_name,
            input=request.arguments,
            ok=outcome.ok,
            result=outcome.result if outcome.ok else outcome.message,
            error_class=outcome.error_class,
            latency_ms=outcome.latency_ms,
            idempotency_key=request.idempotency_key or str(uuid.uuid4()),
            correlation_id=outcome.correlation_id,
            org_id=request.org_id,
        )
        try:
            self.tool_log.append(conversation_id, entry)
        except Exception as e:
            logger.error(f"Failed to append tool log entry for conversation {conversation_id}: {e}")
            raise
