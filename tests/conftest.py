"""Shared fixtures: plugin packages written to tmp_path and MCP fixture scripts."""

import json
import sys
import textwrap
from pathlib import Path

import pytest

from plugin_runtime.plugins.manager import PluginHost
from plugin_runtime.plugins.manifest import load_manifest
from plugin_runtime.plugins.store import OrgStateStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Short timings so supervision tests finish quickly
FAST_MCP_OPTIONS = {
    "health_check_interval": 0,
    "restart_backoff": 0.05,
    "kill_grace_period": 0.5,
    "handshake_timeout": 5,
    "rpc_timeout": 5,
}

MINIMAL_ENTRY = """
from plugin_runtime.plugins.loader import PluginDefinition

plugin = PluginDefinition(name="demo")
"""


def server_options(script: str, server_id: str = "echo", **extra) -> dict:
    """Stdio server options running one of the fixture scripts."""
    return {
        "id": server_id,
        "command": sys.executable,
        "args": [str(FIXTURES_DIR / script)],
        **extra,
    }


def write_plugin(root: Path, name: str = "demo", entry_source: str = MINIMAL_ENTRY, **block) -> Path:
    """Write a plugin package (plugin.json + index.py) under ``root / name``."""
    plugin_dir = root / name
    plugin_dir.mkdir(parents=True, exist_ok=True)
    plugin_block = {
        "entry": "index.py",
        "displayName": name.title(),
        "category": "tool",
        "capabilities": ["mcp", "config", "auth"],
    }
    plugin_block.update(block)
    descriptor = {"name": name, "version": "1.0.0", "description": f"{name} test plugin", "plugin": plugin_block}
    (plugin_dir / "plugin.json").write_text(json.dumps(descriptor), encoding="utf-8")
    (plugin_dir / "index.py").write_text(textwrap.dedent(entry_source), encoding="utf-8")
    return plugin_dir


@pytest.fixture
def make_plugin(tmp_path):
    """Factory fixture: ``make_plugin(name=..., entry_source=..., **manifest_block)``."""

    def _make(name: str = "demo", entry_source: str = MINIMAL_ENTRY, **block) -> Path:
        return write_plugin(tmp_path / "plugins", name, entry_source, **block)

    return _make


@pytest.fixture
def make_host(make_plugin):
    """Factory fixture returning an uninitialized PluginHost over a memory store."""

    def _make(name: str = "demo", entry_source: str = MINIMAL_ENTRY, environ=None, **block) -> PluginHost:
        manifest = load_manifest(make_plugin(name, entry_source, **block))
        return PluginHost(
            manifest,
            OrgStateStore(),
            mcp_options=FAST_MCP_OPTIONS,
            environ=environ if environ is not None else {},
            platform_api=False,
        )

    return _make
