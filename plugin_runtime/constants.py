"""Global constants for the plugin runtime."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Directory paths
RUNTIME_ROOT = Path(__file__).resolve().parent.parent

# Runtime working directory (supports PLUGIN_RUNTIME_CWD env var, relative paths resolve against RUNTIME_ROOT)
_runtime_cwd_env = os.getenv("PLUGIN_RUNTIME_CWD", "")
if _runtime_cwd_env:
    _runtime_cwd_path = Path(_runtime_cwd_env)
    RUNTIME_CWD = _runtime_cwd_path if _runtime_cwd_path.is_absolute() else (RUNTIME_ROOT / _runtime_cwd_path).resolve()
else:
    RUNTIME_CWD = RUNTIME_ROOT

DATA_DIR = RUNTIME_CWD / "data"
BUNDLED_PLUGINS_DIR = Path(os.getenv("BUNDLED_PLUGINS_DIR", str(RUNTIME_ROOT / "plugins" / "bundled")))
INSTALLED_PLUGINS_DIR = Path(os.getenv("INSTALLED_PLUGINS_DIR", str(DATA_DIR / "plugins")))
PLUGIN_STATE_FILE = Path(os.getenv("PLUGIN_STATE_FILE", str(DATA_DIR / "plugin_state.json")))
PLUGIN_TOOL_LOG_DIR = Path(os.getenv("PLUGIN_TOOL_LOG_DIR", str(DATA_DIR / "tool_logs")))

# Package descriptor
MANIFEST_FILE = "plugin.json"
MANIFEST_BLOCK = "plugin"

# MCP process supervision (seconds)
HEALTH_CHECK_INTERVAL = float(os.getenv("PLUGIN_HEALTH_CHECK_INTERVAL", "30"))
MAX_RESTART_ATTEMPTS = int(os.getenv("PLUGIN_MAX_RESTARTS", "3"))
RESTART_BACKOFF = float(os.getenv("PLUGIN_RESTART_BACKOFF", "5"))
RPC_TIMEOUT = float(os.getenv("PLUGIN_RPC_TIMEOUT", "30"))
KILL_GRACE_PERIOD = float(os.getenv("PLUGIN_KILL_GRACE", "5"))
HANDSHAKE_TIMEOUT = float(os.getenv("PLUGIN_HANDSHAKE_TIMEOUT", "10"))
COMMAND_TIMEOUT = float(os.getenv("PLUGIN_COMMAND_TIMEOUT", "300"))
PROBE_TIMEOUT = float(os.getenv("PLUGIN_PROBE_TIMEOUT", "10"))

# Serialized organization context handed to production workers
ORG_CONFIG_ENV = "PLUGIN_ORG_CONFIG"
ORG_AUTH_ENV = "PLUGIN_ORG_AUTH"

# MCP protocol
MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "plugin-runtime"
CLIENT_VERSION = "1.0.0"

SECRET_MASK = "********"

# Outbound platform API used by plugin code
PLATFORM_API_URL = os.getenv("PLATFORM_API_URL", "http://localhost:3001")
PLATFORM_API_TOKEN = os.getenv("PLATFORM_API_TOKEN", "")

# Extra plugin search paths, ':'-separated
PLUGIN_PATHS = [Path(p) for p in os.getenv("PLUGIN_PATHS", "").split(":") if p]
