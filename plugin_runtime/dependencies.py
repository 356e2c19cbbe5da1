"""Dependency injection container for services."""

import logging
from typing import Optional

from plugin_runtime.constants import (
    BUNDLED_PLUGINS_DIR,
    INSTALLED_PLUGINS_DIR,
    PLUGIN_PATHS,
    PLUGIN_STATE_FILE,
    PLUGIN_TOOL_LOG_DIR,
)
from plugin_runtime.plugins.manager import PluginManager
from plugin_runtime.tools.bridge import ToolExecutionBridge
from plugin_runtime.tools.tool_log import JsonlToolLog, ToolLog

logger = logging.getLogger(__name__)

# ============================================================================
# Global service instances (singletons exposed via functions for easier testing/mocking)
# ============================================================================

_plugin_manager_instance: Optional[PluginManager] = None
_tool_log_instance: Optional[ToolLog] = None
_tool_bridge_instance: Optional[ToolExecutionBridge] = None


def get_plugin_manager() -> PluginManager:
    """Get plugin manager (singleton)."""
    global _plugin_manager_instance
    if _plugin_manager_instance is None:
        _plugin_manager_instance = PluginManager(
            bundled_dir=BUNDLED_PLUGINS_DIR,
            installed_dir=INSTALLED_PLUGINS_DIR,
            state_file=PLUGIN_STATE_FILE,
            extra_paths=PLUGIN_PATHS or None,
        )
        logger.info("Created PluginManager instance")
    return _plugin_manager_instance


def get_tool_log() -> ToolLog:
    """Get tool log (singleton)."""
    global _tool_log_instance
    if _tool_log_instance is None:
        _tool_log_instance = JsonlToolLog(PLUGIN_TOOL_LOG_DIR)
        logger.info(f"Created JsonlToolLog at {PLUGIN_TOOL_LOG_DIR}")
    return _tool_log_instance


def get_tool_bridge() -> ToolExecutionBridge:
    """Get tool execution bridge (singleton) over the plugin manager's hosts."""
    global _tool_bridge_instance
    if _tool_bridge_instance is None:
        _tool_bridge_instance = ToolExecutionBridge(get_plugin_manager().hosts, get_tool_log())
        logger.info("Created ToolExecutionBridge instance")
    return _tool_bridge_instance


def set_services(
    plugin_manager: Optional[PluginManager] = None,
    tool_log: Optional[ToolLog] = None,
) -> None:
    """Install pre-built services (tests and embedding applications)."""
    global _plugin_manager_instance, _tool_log_instance, _tool_bridge_instance
    if plugin_manager is not None:
        _plugin_manager_instance = plugin_manager
    if tool_log is not None:
        _tool_log_instance = tool_log
    _tool_bridge_instance = None


# Test utility function (resets all singletons)
def reset_services():
    """Reset all service instances (only for testing)."""
    global _plugin_manager_instance, _tool_log_instance, _tool_bridge_instance

    _plugin_manager_instance = None
    _tool_log_instance = None
    _tool_bridge_instance = None
    logger.info("Reset all service instances")
