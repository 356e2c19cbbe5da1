"""Hook executor - calls plugin hooks with the right context and failure policy.

| Hook              | Failure policy                                   |
|-------------------|--------------------------------------------------|
| on_initialize     | fatal, raises HookFailure                        |
| on_start          | organization becomes Degraded                    |
| on_validate_auth  | missing => valid, raised => invalid              |
| on_config_update  | logged only                                      |
| on_disable        | logged only, MCP servers are stopped regardless  |
"""

import inspect
import logging
from typing import Any, Optional, Tuple

from plugin_runtime.errors import HookFailure
from plugin_runtime.plugins.contexts import (
    AuthValidationContext,
    ConfigUpdateContext,
    DisableContext,
    GlobalContext,
    StartContext,
)
from plugin_runtime.plugins.loader import PluginDefinition

logger = logging.getLogger(__name__)


async def resolve_result(value: Any) -> Any:
    """Await the value if a hook returned a pending computation."""
    if inspect.isawaitable(value):
        return await value
    return value


class HookExecutor:
    """Invokes the hooks present on one plugin definition."""

    def __init__(self, definition: PluginDefinition, plugin_id: str):
        self.definition = definition
        self.plugin_id = plugin_id

    async def _call(self, hook: str, ctx: Any) -> Any:
        fn = getattr(self.definition, hook)
        return await resolve_result(fn(ctx))

    async def initialize(self, ctx: GlobalContext) -> None:
        """Run on_initialize once per process.

        Raises:
            HookFailure: if the hook raises; the worker must abort
        """
        if not self.definition.has_hook("on_initialize"):
            logger.debug(f"Plugin {self.plugin_id} has no on_initialize hook")
            return
        try:
            await self._call("on_initialize", ctx)
        except Exception as e:
            logger.error(f"on_initialize failed for plugin {self.plugin_id}: {e}")
            raise HookFailure("on_initialize", str(e)) from e
        logger.info(f"Initialized plugin: {self.plugin_id}")

    async def start(self, ctx: StartContext) -> Tuple[bool, Optional[str]]:
        """Run on_start for one organization.

        Returns:
            (ok, error). A raised exception or an explicit False result is a failure.
        """
        if not self.definition.has_hook("on_start"):
            return True, None
        try:
            result = await self._call("on_start", ctx)
        except Exception as e:
            logger.error(f"on_start failed for plugin {self.plugin_id}, org {ctx.org.id}: {e}")
            return False, str(e)
        if result is False:
            logger.warning(f"on_start returned false for plugin {self.plugin_id}, org {ctx.org.id}")
            return False, "on_start returned false"
        return True, None

    async def validate_auth(self, ctx: AuthValidationContext) -> bool:
        if not self.definition.has_hook("on_validate_auth"):
            return True
        try:
            result = await self._call("on_validate_auth", ctx)
        except Exception as e:
            logger.warning(f"on_validate_auth raised for plugin {self.plugin_id}, org {ctx.org.id}: {e}")
            return False
        return bool(result)

    async def config_update(self, ctx: ConfigUpdateContext) -> None:
        if not self.definition.has_hook("on_config_update"):
            return
        try:
            await self._call("on_config_update", ctx)
        except Exception as e:
            logger.error(f"on_config_update failed for plugin {self.plugin_id}, org {ctx.org.id}: {e}")

    async def disable(self, ctx: DisableContext) -> None:
        if not self.definition.has_hook("on_disable"):
            return
        try:
            await self._call("on_disable", ctx)
        except Exception as e:
            logger.error(f"on_disable failed for plugin {self.plugin_id}, org {ctx.org.id}: {e}")
