"""Plugin loader - imports a plugin entry file and normalizes its export.

An entry module exports exactly one value named ``plugin``. It is either a
ready :class:`PluginDefinition` or a factory that takes the global context
and returns one. Both shapes are represented by the :class:`Direct` /
:class:`Factory` union and resolved the same way.
"""
from __future__ import annotations

import importlib.util
import logging
import sys
from dataclasses import dataclass, fields
from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from plugin_runtime.errors import LoadError
from plugin_runtime.plugins.manifest import PluginManifest

if TYPE_CHECKING:
    from plugin_runtime.plugins.contexts import GlobalContext

logger = logging.getLogger(__name__)

EXPORT_NAME = "plugin"
HOOK_NAMES = ("on_initialize", "on_start", "on_validate_auth", "on_config_update", "on_disable")


@dataclass
class PluginDefinition:
    """Record of optional hook callables. Absent hooks are None."""

    name: str
    on_initialize: Optional[Callable] = None
    on_start: Optional[Callable] = None
    on_validate_auth: Optional[Callable] = None
    on_config_update: Optional[Callable] = None
    on_disable: Optional[Callable] = None

    def has_hook(self, hook: str) -> bool:
        return getattr(self, hook, None) is not None

    @property
    def hooks(self) -> list:
        return [h for h in HOOK_NAMES if self.has_hook(h)]


@dataclass(frozen=True)
class Direct:
    definition: Any


@dataclass(frozen=True)
class Factory:
    make: Callable[["GlobalContext"], Any]


PluginExport = Union[Direct, Factory]


def define_plugin(value: Any) -> PluginExport:
    """Wrap a definition or a factory for export from an entry module.

    Example::

        plugin = define_plugin(lambda ctx: PluginDefinition(name="stripe", on_start=start))
    """
    if isinstance(value, (Direct, Factory)):
        return value
    if isinstance(value, (PluginDefinition, dict)):
        return Direct(value)
    if callable(value):
        return Factory(value)
    return Direct(value)


def validate_definition(value: Any) -> PluginDefinition:
    """Check the shape of a resolved definition and return it as a record.

    Accepts a PluginDefinition, a dict, or any object exposing ``name`` and
    hook attributes.
    """
    if isinstance(value, PluginDefinition):
        raw = {f.name: getattr(value, f.name) for f in fields(PluginDefinition)}
    elif isinstance(value, dict):
        raw = dict(value)
    elif value is not None and hasattr(value, "name"):
        raw = {"name": getattr(value, "name")}
        raw.update({h: getattr(value, h, None) for h in HOOK_NAMES})
    else:
        raise LoadError(f"Plugin definition must be an object with a name, got {type(value).__name__}")

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise LoadError("Plugin definition must have a non-empty string 'name'")

    for hook in HOOK_NAMES:
        fn = raw.get(hook)
        if fn is not None and not callable(fn):
            raise LoadError(f"Plugin definition hook '{hook}' must be callable, got {type(fn).__name__}")

    return PluginDefinition(name=name, **{h: raw.get(h) for h in HOOK_NAMES})


def import_entry(manifest: PluginManifest):
    """Import the entry file of a plugin as a fresh module."""
    plugin_dir = str(manifest.root)
    module_name = f"plugin_{manifest.id.replace('-', '_').replace('@', '').replace('/', '_')}"

    # Plugin-local imports resolve against the plugin root while executing
    if plugin_dir not in sys.path:
        sys.path.insert(0, plugin_dir)
    try:
        spec = importlib.util.spec_from_file_location(module_name, manifest.entry_path)
        if spec is None or spec.loader is None:
            raise LoadError(f"Cannot import entry file {manifest.entry_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except LoadError:
        raise
    except Exception as e:
        raise LoadError(f"Failed to import plugin '{manifest.id}' from {manifest.entry_path}: {e}") from e
    finally:
        if plugin_dir in sys.path:
            sys.path.remove(plugin_dir)
    return module


def load_export(manifest: PluginManifest) -> PluginExport:
    """Import the entry file and return its export as Direct or Factory."""
    module = import_entry(manifest)
    if not hasattr(module, EXPORT_NAME):
        raise LoadError(
            f"Entry file {manifest.entry} of plugin '{manifest.id}' does not export '{EXPORT_NAME}'"
        )
    value = getattr(module, EXPORT_NAME)
    if value is None:
        raise LoadError(f"Export '{EXPORT_NAME}' of plugin '{manifest.id}' is None")
    export = define_plugin(value)
    logger.info(f"Loaded plugin entry: {manifest.id} ({type(export).__name__.lower()} export)")
    return export


def resolve_definition(export: PluginExport, ctx: "GlobalContext") -> PluginDefinition:
    """Turn an export into a validated definition, calling the factory if needed."""
    if isinstance(export, Factory):
        try:
            value = export.make(ctx)
        except Exception as e:
            raise LoadError(f"Plugin factory raised: {e}") from e
    else:
        value = export.definition
    definition = validate_definition(value)
    logger.debug(f"Resolved plugin definition '{definition.name}' with hooks {definition.hooks}")
    return definition
