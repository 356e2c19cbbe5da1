"""Organization lifecycle - explicit per-organization state machine.

    Disabled -> Starting -> Running | Degraded -> Disabling -> Disabled

Running and Degraded go back to Starting on a config or auth change.
Every transition is broadcast to observers as ``org_status_changed``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from plugin_runtime.errors import LifecycleError
from plugin_runtime.observers import ObserverRegistry
from plugin_runtime.plugins.registry import OrganizationInstance, OrgStatus

logger = logging.getLogger(__name__)

TRANSITIONS = {
    OrgStatus.DISABLED: {OrgStatus.STARTING},
    OrgStatus.STARTING: {OrgStatus.RUNNING, OrgStatus.DEGRADED, OrgStatus.DISABLING},
    OrgStatus.RUNNING: {OrgStatus.STARTING, OrgStatus.DEGRADED, OrgStatus.DISABLING},
    OrgStatus.DEGRADED: {OrgStatus.STARTING, OrgStatus.DISABLING},
    OrgStatus.DISABLING: {OrgStatus.DISABLED},
}


class OrganizationLifecycle:
    """Validates transitions and serializes work per organization."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        self.observers = ObserverRegistry("OrganizationLifecycle")
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, org_id: str) -> asyncio.Lock:
        """Lock that keeps start/disable of one organization from overlapping."""
        if org_id not in self._locks:
            self._locks[org_id] = asyncio.Lock()
        return self._locks[org_id]

    def can_transition(self, current: OrgStatus, target: OrgStatus) -> bool:
        return target in TRANSITIONS.get(current, set())

    def transition(
        self,
        instance: OrganizationInstance,
        target: OrgStatus,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Move an instance to ``target`` and notify observers.

        Raises:
            LifecycleError: if the transition is not allowed
        """
        previous = instance.status
        if not self.can_transition(previous, target):
            raise LifecycleError(
                f"Invalid transition for {self.plugin_id}/{instance.org_id}: {previous.value} -> {target.value}"
            )

        instance.status = target
        instance.reason = reason
        instance.error = error
        instance.updated_at = datetime.now()
        logger.info(f"[{self.plugin_id}] org {instance.org_id}: {previous.value} -> {target.value}"
                    + (f" ({reason})" if reason else ""))
        self.observers.emit(
            "org_status_changed",
            plugin_id=self.plugin_id,
            org_id=instance.org_id,
            previous=previous.value,
            status=target.value,
            reason=reason,
        )
