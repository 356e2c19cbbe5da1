"""Plugin manifest - reads and validates a plugin package descriptor."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from plugin_runtime.constants import MANIFEST_BLOCK, MANIFEST_FILE
from plugin_runtime.errors import ManifestError
from plugin_runtime.mcp.types import StdioServerOptions, ToolDefinition

logger = logging.getLogger(__name__)

CATEGORIES = ("integration", "channel", "tool", "analytics")
CAPABILITIES = ("routes", "mcp", "auth", "config", "ui")


class ManifestBlock(BaseModel):
    """Platform-specific block of the package descriptor, as written on disk."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entry: StrictStr = Field(..., min_length=1, description="Entry file relative to the plugin root")
    display_name: StrictStr = Field(..., alias="displayName")
    category: Literal["integration", "channel", "tool", "analytics"]
    capabilities: List[Literal["routes", "mcp", "auth", "config", "ui"]]
    env: List[StrictStr] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    mcp_servers: List[StdioServerOptions] = Field(default_factory=list, alias="mcpServers")

    @field_validator("display_name")
    @classmethod
    def display_name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("displayName cannot be empty")
        return v.strip()


class PluginManifest(BaseModel):
    """Validated, immutable plugin manifest."""

    model_config = ConfigDict(frozen=True)

    package_id: str = Field(..., description="Unique plugin identifier from the descriptor 'name'")
    version: str = "0.0.0"
    description: str = ""
    root: Path
    entry: str
    entry_path: Path
    display_name: str
    category: str
    capabilities: FrozenSet[str]
    env_allow_list: FrozenSet[str] = frozenset()
    tools: tuple = ()
    mcp_servers: tuple = ()

    @property
    def id(self) -> str:
        return self.package_id

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities

    def allows_env(self, name: str) -> bool:
        return name in self.env_allow_list

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return next((t for t in self.tools if t.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.package_id,
            "version": self.version,
            "description": self.description,
            "display_name": self.display_name,
            "category": self.category,
            "capabilities": sorted(self.capabilities),
            "env": sorted(self.env_allow_list),
            "entry": self.entry,
            "tools": [t.to_dict() for t in self.tools],
            "mcp_servers": [s.id for s in self.mcp_servers],
        }


def resolve_within(root: Path, relative: str, what: str = "path") -> Path:
    """Resolve ``relative`` against ``root`` and refuse anything escaping it."""
    root = root.resolve()
    candidate = (root / relative).resolve()
    if candidate != root and root not in candidate.parents:
        raise ManifestError(f"{what} '{relative}' escapes the plugin root {root}")
    return candidate


def _format_errors(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{loc}: {e.get('msg')}" if loc else e.get("msg", ""))
    return "; ".join(parts)


def load_manifest(plugin_root: Path) -> PluginManifest:
    """Load and validate the manifest of the plugin at ``plugin_root``.

    Args:
        plugin_root: Plugin package directory

    Returns:
        Validated PluginManifest

    Raises:
        ManifestError: On any missing or invalid field. No partial manifest is returned.
    """
    plugin_root = Path(plugin_root).resolve()
    descriptor_file = plugin_root / MANIFEST_FILE

    try:
        with open(descriptor_file, "r", encoding="utf-8") as f:
            descriptor = json.load(f)
    except FileNotFoundError:
        raise ManifestError(f"No {MANIFEST_FILE} found at {plugin_root}")
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {descriptor_file}: {e}")
    except OSError as e:
        raise ManifestError(f"Cannot read {descriptor_file}: {e}")

    if not isinstance(descriptor, dict):
        raise ManifestError(f"{descriptor_file} must contain a JSON object")

    package_id = descriptor.get("name")
    if not isinstance(package_id, str) or not package_id.strip():
        raise ManifestError(f"Missing or invalid 'name' field in {descriptor_file}")
    package_id = package_id.strip()
    if ":" in package_id:
        raise ManifestError(f"Plugin name '{package_id}' must not contain ':'")

    block = descriptor.get(MANIFEST_BLOCK)
    if not isinstance(block, dict):
        raise ManifestError(f"Missing '{MANIFEST_BLOCK}' block in {descriptor_file}")

    try:
        parsed = ManifestBlock.model_validate(block)
    except ValidationError as e:
        raise ManifestError(f"Invalid '{MANIFEST_BLOCK}' block in {descriptor_file}: {_format_errors(e)}")

    entry_path = resolve_within(plugin_root, parsed.entry, what="entry")
    if not entry_path.is_file():
        raise ManifestError(f"Entry file not found: {entry_path}")

    server_ids = [s.id for s in parsed.mcp_servers]
    if len(server_ids) != len(set(server_ids)):
        raise ManifestError(f"Duplicate mcpServers ids in {descriptor_file}: {server_ids}")
    for server in parsed.mcp_servers:
        resolve_within(plugin_root, server.cwd, what=f"mcpServers[{server.id}].cwd")

    tool_names = [t.name for t in parsed.tools]
    if len(tool_names) != len(set(tool_names)):
        raise ManifestError(f"Duplicate tool names in {descriptor_file}: {tool_names}")

    manifest = PluginManifest(
        package_id=package_id,
        version=str(descriptor.get("version", "0.0.0")),
        description=str(descriptor.get("description", "")),
        root=plugin_root,
        entry=parsed.entry,
        entry_path=entry_path,
        display_name=parsed.display_name,
        category=parsed.category,
        capabilities=frozenset(parsed.capabilities),
        env_allow_list=frozenset(parsed.env),
        tools=tuple(parsed.tools),
        mcp_servers=tuple(parsed.mcp_servers),
    )
    logger.debug(f"Loaded manifest: {manifest.package_id} at {plugin_root}")
    return manifest
