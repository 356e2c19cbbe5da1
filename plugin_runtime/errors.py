"""Error taxonomy for the plugin runtime."""

from typing import List, Optional


class PluginRuntimeError(Exception):
    """Base class for all plugin runtime errors."""


class ManifestError(PluginRuntimeError):
    """Plugin package descriptor is missing or invalid."""


class LoadError(PluginRuntimeError):
    """Plugin entry module could not be imported or has an invalid shape."""


class HookFailure(PluginRuntimeError):
    """A lifecycle hook failed in a way that must abort the caller."""

    def __init__(self, hook: str, message: str):
        super().__init__(f"{hook} hook failed: {message}")
        self.hook = hook


class RegistrationError(PluginRuntimeError):
    """Invalid call during the descriptor (registration) phase."""


class CapabilityError(PluginRuntimeError):
    """Plugin used an integration point it did not declare in its manifest."""

    def __init__(self, capability: str, plugin_id: Optional[str] = None):
        owner = f"Plugin '{plugin_id}'" if plugin_id else "Plugin"
        super().__init__(
            f"{owner} does not declare the '{capability}' capability. "
            f"Add it to the capabilities array in the plugin manifest."
        )
        self.capability = capability


class ConfigDeniedError(PluginRuntimeError):
    """Config field references an environment variable outside the allow-list."""

    def __init__(self, field: str, env_var: str):
        super().__init__(
            f"Config field '{field}' references env var '{env_var}' "
            f"which is not in the manifest allow-list"
        )
        self.field = field
        self.env_var = env_var


class ConfigRequiredError(PluginRuntimeError):
    """Required config field resolved to no value."""

    def __init__(self, field: str):
        super().__init__(
            f"Config field '{field}' is required but not configured. "
            f"Set it in the plugin settings or provide it via an allowed environment variable."
        )
        self.field = field


class ProcessExitError(PluginRuntimeError):
    """MCP child process exited while it was expected to be running."""

    def __init__(self, server_id: str, code: Optional[int]):
        super().__init__(f"MCP server '{server_id}' exited with code {code}")
        self.server_id = server_id
        self.code = code


class McpStartError(PluginRuntimeError):
    """MCP server could not be started or connected."""


class McpServerNotFound(PluginRuntimeError):
    """No MCP server is tracked under the given id."""


class RpcError(PluginRuntimeError):
    """JSON-RPC error object returned by an MCP server."""

    def __init__(self, message: str, code: Optional[int] = None, data=None):
        super().__init__(message)
        self.code = code
        self.data = data


class ToolCallError(PluginRuntimeError):
    """Base for failures returned to the orchestrator as structured results."""

    error_class = "ToolCallError"


class ToolNotFound(ToolCallError):
    error_class = "ToolNotFound"

    def __init__(self, message: str, available: Optional[List[str]] = None):
        self.available = sorted(available or [])
        suffix = ", ".join(self.available) if self.available else "none"
        super().__init__(f"{message}. Available tools: {suffix}")


class ToolValidationError(ToolCallError):
    error_class = "ToolValidationError"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid tool arguments: {', '.join(self.errors)}")


class ToolUnavailable(ToolCallError):
    error_class = "ToolUnavailable"


class ToolTimeout(ToolCallError):
    error_class = "ToolTimeout"


class ToolExecutionError(ToolCallError):
    error_class = "ToolExecutionError"


class LifecycleError(PluginRuntimeError):
    """Requested organization state transition is not allowed."""


class PlatformApiError(PluginRuntimeError):
    """Outbound platform API request failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class WorkerConfigError(PluginRuntimeError):
    """Worker invocation or serialized organization context is invalid."""
