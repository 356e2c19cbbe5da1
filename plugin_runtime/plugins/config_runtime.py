"""Runtime config API - resolves config values for one organization.

Resolution order for a field:
    1. Value stored for the organization
    2. Environment fallback, only when the variable is in the manifest allow-list
    3. Descriptor default
    4. None

A field whose env fallback is not allow-listed fails closed with
ConfigDeniedError. The host environment is never consulted for it.
"""

import json
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

from plugin_runtime.constants import SECRET_MASK
from plugin_runtime.errors import ConfigDeniedError, ConfigRequiredError
from plugin_runtime.plugins.manifest import PluginManifest
from plugin_runtime.plugins.registrations import RegistrationStore

logger = logging.getLogger(__name__)

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off", "")


class _Unparseable(Exception):
    pass


def parse_env_value(raw: str, field_type: str) -> Any:
    """Parse an environment string according to the declared field type."""
    if field_type == "string":
        return raw
    if field_type == "number":
        try:
            number = float(raw)
        except ValueError:
            raise _Unparseable(f"expects number, got {raw!r}")
        return int(number) if number.is_integer() and "." not in raw else number
    if field_type == "boolean":
        lowered = raw.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise _Unparseable(f"expects boolean, got {raw!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise _Unparseable(f"expects JSON {field_type}, got invalid JSON")
    expected = list if field_type == "array" else dict
    if not isinstance(value, expected):
        raise _Unparseable(f"expects JSON {field_type}, got {type(value).__name__}")
    return value


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class ConfigRuntime:
    """Config API available to runtime-phase hooks of one organization."""

    def __init__(
        self,
        org_config: Dict[str, Any],
        store: RegistrationStore,
        manifest: PluginManifest,
        logger: Optional[logging.Logger] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._org_config = dict(org_config or {})
        self._store = store
        self._manifest = manifest
        self._logger = logger or logging.getLogger(__name__)
        self._environ = os.environ if environ is None else environ

    def _resolve(self, key: str) -> Tuple[Any, str]:
        value = self._org_config.get(key)
        if value is not None:
            return value, "org"

        descriptor = self._store.get_config_field(key)
        if descriptor is None:
            self._logger.warning(f"Config field '{key}' is not registered in schema")
            return None, "unset"

        if descriptor.env:
            if not self._manifest.allows_env(descriptor.env):
                self._logger.error(
                    f"Denied env fallback '{descriptor.env}' for config field '{key}': not in manifest allow-list"
                )
                raise ConfigDeniedError(key, descriptor.env)
            raw = self._environ.get(descriptor.env)
            if raw is not None:
                try:
                    return parse_env_value(raw, descriptor.type), "env"
                except _Unparseable as e:
                    self._logger.warning(f"Config field '{key}' env var '{descriptor.env}' {e}; ignoring it")

        if descriptor.default is not None:
            return descriptor.default, "default"
        return None, "unset"

    def get(self, key: str) -> Any:
        """Resolve a field, raising ConfigRequiredError when a required field is absent."""
        value, _ = self._resolve(key)
        if value is None:
            descriptor = self._store.get_config_field(key)
            if descriptor is not None and descriptor.required:
                raise ConfigRequiredError(key)
        return value

    def get_optional(self, key: str, default: Any = None) -> Any:
        value, _ = self._resolve(key)
        return default if value is None else value

    def keys(self) -> List[str]:
        return list(self._store.get_config_schema().keys())

    def to_env(self, mapping: Dict[str, str]) -> Dict[str, str]:
        """Build an env dict for a child process from resolved config values.

        Args:
            mapping: config field name -> environment variable name

        Returns:
            Only the variables whose field resolved to a value
        """
        env: Dict[str, str] = {}
        for key, env_name in mapping.items():
            value, _ = self._resolve(key)
            if value is not None:
                env[env_name] = stringify(value)
        return env

    def resolve_all(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Resolve every registered field for introspection.

        Denied fields do not raise here; they are reported with source ``denied``.
        """
        values: Dict[str, Any] = {}
        metadata: Dict[str, Dict[str, Any]] = {}
        for name, descriptor in self._store.get_config_schema().items():
            try:
                value, source = self._resolve(name)
            except ConfigDeniedError:
                value, source = None, "denied"
            if mask_secrets and descriptor.sensitive and value is not None:
                shown = SECRET_MASK
            else:
                shown = value
            values[name] = shown
            metadata[name] = {
                "source": source,
                "sensitive": descriptor.sensitive,
                "required": descriptor.required,
                "has_env_fallback": bool(descriptor.env) and self._manifest.allows_env(descriptor.env),
            }
        return {"values": values, "metadata": metadata}

    def snapshot(self) -> Dict[str, Any]:
        """Resolved values of all fields that resolve without denial, unmasked."""
        result = {}
        for name in self.keys():
            try:
                value, _ = self._resolve(name)
            except ConfigDeniedError:
                continue
            if value is not None:
                result[name] = value
        return result
