"""Organization state store - enablement, config values and credentials per organization.

This is the narrow persistence API the runtime consumes. The default
implementation keeps everything in one JSON file; without a file it is
memory-only (used by workers that receive their state from the platform).

State format:
{
    "plugins": {
        "stripe": {
            "orgs": {
                "org-1": {
                    "name": "Acme",
                    "enabled": true,
                    "config": {"apiKey": "sk_..."},
                    "auth": {"methodId": "apiKey", "credentials": {"apiKey": "sk_..."}}
                }
            }
        }
    }
}
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class OrgStateStore:
    """Manages per-organization plugin state."""

    def __init__(self, state_file: Optional[Path] = None):
        self.state_file = Path(state_file) if state_file else None
        self._state: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load state from file, starting empty if not found."""
        if self.state_file and self.state_file.exists():
            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.error(f"Error loading plugin state: {e}")
        return {"plugins": {}}

    def _save(self) -> None:
        if self.state_file is None:
            return
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2, ensure_ascii=False)
        logger.debug(f"Saved plugin state to {self.state_file}")

    def _org(self, plugin_id: str, org_id: str, create: bool = False) -> Optional[Dict[str, Any]]:
        plugins = self._state.setdefault("plugins", {})
        if create:
            orgs = plugins.setdefault(plugin_id, {}).setdefault("orgs", {})
            return orgs.setdefault(org_id, {"name": None, "enabled": False, "config": {}, "auth": None})
        return plugins.get(plugin_id, {}).get("orgs", {}).get(org_id)

    def get_org(self, plugin_id: str, org_id: str) -> Optional[Dict[str, Any]]:
        record = self._org(plugin_id, org_id)
        return copy.deepcopy(record) if record is not None else None

    def list_plugins(self) -> List[str]:
        return list(self._state.get("plugins", {}).keys())

    def list_orgs(self, plugin_id: str) -> List[str]:
        return list(self._state.get("plugins", {}).get(plugin_id, {}).get("orgs", {}).keys())

    def get_enabled_orgs(self, plugin_id: str) -> List[str]:
        orgs = self._state.get("plugins", {}).get(plugin_id, {}).get("orgs", {})
        return [org_id for org_id, record in orgs.items() if record.get("enabled")]

    def is_enabled(self, plugin_id: str, org_id: str) -> bool:
        record = self._org(plugin_id, org_id)
        return bool(record and record.get("enabled"))

    def set_enabled(self, plugin_id: str, org_id: str, enabled: bool, name: Optional[str] = None) -> None:
        record = self._org(plugin_id, org_id, create=True)
        record["enabled"] = enabled
        if name:
            record["name"] = name
        self._save()
        logger.info(f"{'Enabled' if enabled else 'Disabled'} plugin {plugin_id} for org {org_id}")

    def get_config(self, plugin_id: str, org_id: str) -> Dict[str, Any]:
        record = self._org(plugin_id, org_id)
        return copy.deepcopy(record.get("config") or {}) if record else {}

    def update_config(self, plugin_id: str, org_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``values`` into the stored config. A None value removes the key."""
        record = self._org(plugin_id, org_id, create=True)
        config = record.setdefault("config", {})
        for key, value in values.items():
            if value is None:
                config.pop(key, None)
            else:
                config[key] = value
        self._save()
        logger.info(f"Updated config for plugin {plugin_id}, org {org_id}: {sorted(values)}")
        return copy.deepcopy(config)

    def get_auth(self, plugin_id: str, org_id: str) -> Optional[Dict[str, Any]]:
        record = self._org(plugin_id, org_id)
        return copy.deepcopy(record.get("auth")) if record else None

    def save_auth(self, plugin_id: str, org_id: str, auth: Optional[Dict[str, Any]]) -> None:
        record = self._org(plugin_id, org_id, create=True)
        record["auth"] = copy.deepcopy(auth)
        self._save()
        logger.info(f"Saved auth for plugin {plugin_id}, org {org_id}")

    def remove_org(self, plugin_id: str, org_id: str) -> None:
        orgs = self._state.get("plugins", {}).get(plugin_id, {}).get("orgs", {})
        if orgs.pop(org_id, None) is not None:
            self._save()

    def reload(self) -> None:
        """Reload state from disk."""
        self._state = self._load()
