"""Organization registry - tracks the per-organization instances of one plugin."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from plugin_runtime.plugins.auth_runtime import AuthState
from plugin_runtime.plugins.contexts import Org

if TYPE_CHECKING:
    from plugin_runtime.mcp.manager import McpProcessManager

logger = logging.getLogger(__name__)


class OrgStatus(str, Enum):
    """Per-organization lifecycle states."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    DISABLING = "disabling"
    DISABLED = "disabled"


@dataclass
class OrganizationInstance:
    """Runtime record of a plugin enabled for one organization."""

    org: Org
    status: OrgStatus = OrgStatus.DISABLED
    config_snapshot: Dict[str, Any] = field(default_factory=dict, repr=False)
    auth_snapshot: Optional[AuthState] = field(default=None, repr=False)
    server_ids: Set[str] = field(default_factory=set)
    mcp: Optional[McpProcessManager] = field(default=None, repr=False)
    error: Optional[str] = None
    reason: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def org_id(self) -> str:
        return self.org.id

    def to_dict(self, sensitive_fields: Optional[Set[str]] = None) -> dict:
        """Serialize for API responses. Sensitive values and credentials are masked."""
        sensitive_fields = sensitive_fields or set()
        config = {
            k: ("********" if k in sensitive_fields and v is not None else v)
            for k, v in self.config_snapshot.items()
        }
        return {
            "org_id": self.org.id,
            "org_name": self.org.name,
            "status": self.status.value,
            "reason": self.reason,
            "error": self.error,
            "config": config,
            "auth": self.auth_snapshot.to_dict(mask=True) if self.auth_snapshot else None,
            "servers": self.mcp.list_servers() if self.mcp else [],
            "updated_at": self.updated_at.isoformat(),
        }


class OrganizationRegistry:
    """Keyed collection of organization instances for one plugin."""

    def __init__(self):
        self._instances: Dict[str, OrganizationInstance] = {}

    def register(self, instance: OrganizationInstance) -> None:
        if instance.org_id in self._instances:
            logger.warning(f"Organization '{instance.org_id}' already registered, overwriting")
        self._instances[instance.org_id] = instance
        logger.debug(f"Registered organization instance: {instance.org_id}")

    def get(self, org_id: str) -> Optional[OrganizationInstance]:
        return self._instances.get(org_id)

    def get_all(self) -> List[OrganizationInstance]:
        return list(self._instances.values())

    def get_by_status(self, status: OrgStatus) -> List[OrganizationInstance]:
        return [i for i in self._instances.values() if i.status == status]

    def remove(self, org_id: str) -> Optional[OrganizationInstance]:
        return self._instances.pop(org_id, None)

    def has(self, org_id: str) -> bool:
        return org_id in self._instances

    def count(self) -> int:
        return len(self._instances)
