"""MCP server records, transports and option models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class McpTransport(str, Enum):
    """How the platform talks to an MCP server."""

    LOCAL_STDIO = "local_stdio"
    LOCAL_CUSTOM = "local_custom"
    REMOTE = "remote"


class McpStatus(str, Enum):
    """MCP server lifecycle states."""

    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ToolDefinition(BaseModel):
    """A callable tool as declared by a plugin or listed by a server."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
    )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class StdioServerOptions(BaseModel):
    """Options for a local MCP server spoken to over stdin/stdout."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    args: List[str] = Field(default_factory=list)
    cwd: str = Field(default=".", alias="workingDir")
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    install: Optional[str] = Field(default=None, description="One-shot install command run before spawn")
    build: Optional[str] = Field(default=None, description="One-shot build command run before spawn")


class ExternalServerOptions(BaseModel):
    """Options for a remote MCP endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    auth_headers: Dict[str, str] = Field(default_factory=dict, alias="authHeaders")
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


@dataclass
class McpServerInstance:
    """Runtime record for one MCP server, owned by the process manager."""

    id: str
    transport: McpTransport
    status: McpStatus = McpStatus.STARTING
    restart_count: int = 0
    started_at: Optional[datetime] = None
    last_health_check_at: Optional[datetime] = None
    error: Optional[str] = None
    handle: Any = field(default=None, repr=False)
    options: Any = field(default=None, repr=False)
    tools: List[ToolDefinition] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        """Serialize for status endpoints. The handle is never exposed."""
        return {
            "id": self.id,
            "transport": self.transport.value,
            "status": self.status.value,
            "restart_count": self.restart_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_health_check_at": (
                self.last_health_check_at.isoformat() if self.last_health_check_at else None
            ),
            "error": self.error,
            "tools": [t.name for t in self.tools],
        }
