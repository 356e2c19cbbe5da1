"""Tool execution bridge, argument validation and the tool log."""

from plugin_runtime.tools.bridge import ToolCallRequest, ToolCallResult, ToolExecutionBridge, split_qualified_name
from plugin_runtime.tools.tool_log import InMemoryToolLog, JsonlToolLog, ToolLog, ToolLogEntry
from plugin_runtime.tools.validation import validate_tool_arguments

__all__ = [
    "ToolCallRequest",
    "ToolCallResult",
    "ToolExecutionBridge",
    "split_qualified_name",
    "InMemoryToolLog",
    "JsonlToolLog",
    "ToolLog",
    "ToolLogEntry",
    "validate_tool_arguments",
]
