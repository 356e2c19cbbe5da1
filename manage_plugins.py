#!/usr/bin/env python3
"""Plugin management CLI tool."""

import argparse
import json
import os
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from rich.console import Console
from rich.table import Table

from plugin_runtime.constants import BUNDLED_PLUGINS_DIR, INSTALLED_PLUGINS_DIR, PLUGIN_PATHS, PLUGIN_STATE_FILE
from plugin_runtime.errors import LoadError, ManifestError
from plugin_runtime.plugins.discovery import PluginDiscovery, PluginPackage
from plugin_runtime.plugins.loader import load_export
from plugin_runtime.plugins.store import OrgStateStore

console = Console()


def get_discovery() -> PluginDiscovery:
    """Create a PluginDiscovery instance."""
    search_paths = [
        (BUNDLED_PLUGINS_DIR, "bundled"),
        (INSTALLED_PLUGINS_DIR, "installed"),
    ]
    search_paths.extend((p, "external") for p in PLUGIN_PATHS)
    return PluginDiscovery(search_paths)


def get_store() -> OrgStateStore:
    """Create an OrgStateStore over the state file."""
    return OrgStateStore(PLUGIN_STATE_FILE)


def find_plugin(plugin_id: str) -> PluginPackage:
    plugin = next((p for p in get_discovery().discover_all() if p.id == plugin_id), None)
    if not plugin:
        console.print(f"[red]Plugin '{plugin_id}' not found.[/red]")
        sys.exit(1)
    return plugin


def cmd_list(args):
    """List all discovered plugins."""
    plugins = get_discovery().discover_all()
    store = get_store()

    if not plugins:
        console.print("No plugins found.")
        return

    table = Table(title="Plugins")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Capabilities")
    table.add_column("Source")
    table.add_column("Enabled orgs")
    table.add_column("Version")

    for p in plugins:
        table.add_row(
            p.id,
            p.manifest.display_name,
            p.manifest.category,
            ", ".join(sorted(p.manifest.capabilities)),
            p.source,
            ", ".join(store.get_enabled_orgs(p.id)) or "-",
            p.manifest.version,
        )
    console.print(table)


def cmd_info(args):
    """Show detailed plugin information."""
    plugin = find_plugin(args.plugin_id)
    manifest = plugin.manifest
    store = get_store()

    console.print(f"[bold]Plugin: {manifest.id}[/bold]")
    console.print(f"  Name:         {manifest.display_name}")
    console.print(f"  Version:      {manifest.version}")
    console.print(f"  Category:     {manifest.category}")
    console.print(f"  Description:  {manifest.description}")
    console.print(f"  Source:       {plugin.source}")
    console.print(f"  Path:         {plugin.path}")
    console.print(f"  Entry:        {manifest.entry}")
    console.print(f"  Capabilities: {', '.join(sorted(manifest.capabilities))}")
    console.print(f"  Env allowed:  {', '.join(sorted(manifest.env_allow_list)) or '-'}")
    if manifest.mcp_servers:
        console.print("  MCP servers:")
        for server in manifest.mcp_servers:
            console.print(f"    - {server.id}: {server.command} {' '.join(server.args)} (cwd {server.cwd})")
    for org_id in store.list_orgs(manifest.id):
        record = store.get_org(manifest.id, org_id)
        console.print(
            f"  Org {org_id}: enabled={record.get('enabled')}, "
            f"config keys={sorted((record.get('config') or {}).keys())}, "
            f"auth={'configured' if record.get('auth') else 'none'}"
        )


def cmd_tools(args):
    """List the tools a plugin declares."""
    plugin = find_plugin(args.plugin_id)
    if not plugin.manifest.tools:
        console.print(f"Plugin '{plugin.id}' declares no tools.")
        return

    table = Table(title=f"Tools of {plugin.id}")
    table.add_column("Qualified name", style="cyan")
    table.add_column("Description")
    table.add_column("Required arguments")
    for tool in plugin.manifest.tools:
        table.add_row(
            f"{plugin.id}:{tool.name}",
            tool.description,
            ", ".join(tool.input_schema.get("required", [])) or "-",
        )
    console.print(table)


def cmd_enable(args):
    """Enable a plugin for an organization."""
    find_plugin(args.plugin_id)
    get_store().set_enabled(args.plugin_id, args.org_id, True)
    console.print(f"Plugin '{args.plugin_id}' enabled for '{args.org_id}'. Restart the service to take effect.")


def cmd_disable(args):
    """Disable a plugin for an organization."""
    get_store().set_enabled(args.plugin_id, args.org_id, False)
    console.print(f"Plugin '{args.plugin_id}' disabled for '{args.org_id}'. Restart the service to take effect.")


def cmd_install(args):
    """Install a plugin from a local path."""
    import shutil

    source = Path(args.path).resolve()
    try:
        plugin = get_discovery().discover_single(source, "installed")
    except ManifestError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    dest = INSTALLED_PLUGINS_DIR / plugin.id
    if dest.exists():
        console.print(f"[red]Plugin '{plugin.id}' already installed at {dest}[/red]")
        sys.exit(1)

    INSTALLED_PLUGINS_DIR.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, dest)
    console.print(f"Plugin '{plugin.id}' installed to {dest}")
    console.print(f"Run 'python manage_plugins.py enable {plugin.id} <org-id>' to enable it.")


def cmd_doctor(args):
    """Run health checks on the plugin system."""
    issues = []
    notes = []

    # Check directories
    if not BUNDLED_PLUGINS_DIR.exists():
        issues.append(f"Bundled plugins directory missing: {BUNDLED_PLUGINS_DIR}")
    if not INSTALLED_PLUGINS_DIR.exists():
        notes.append(f"Installed plugins directory missing: {INSTALLED_PLUGINS_DIR}")

    # Check state file
    if PLUGIN_STATE_FILE.exists():
        try:
            with open(PLUGIN_STATE_FILE) as f:
                json.load(f)
        except json.JSONDecodeError as e:
            issues.append(f"Plugin state file has invalid JSON: {e}")

    # Discover and validate plugins
    discovery = get_discovery()
    plugins = discovery.discover_all()
    for path, error in discovery.errors.items():
        issues.append(f"Invalid plugin at {path}: {error}")

    # Check entry files import and export a plugin
    for p in plugins:
        try:
            load_export(p.manifest)
        except LoadError as e:
            issues.append(f"Plugin '{p.id}': {e}")
        for env_name in sorted(p.manifest.env_allow_list):
            if env_name not in os.environ:
                notes.append(f"Plugin '{p.id}': allow-listed env var {env_name} is not set")

    # Check for enabled organizations of plugins that don't exist
    store = get_store()
    discovered_ids = {p.id for p in plugins}
    for plugin_id in store.list_plugins():
        if plugin_id not in discovered_ids and store.get_enabled_orgs(plugin_id):
            issues.append(f"Plugin '{plugin_id}' is enabled for organizations but not found in any search path")

    for note in notes:
        console.print(f"[yellow]note:[/yellow] {note}")
    if issues:
        console.print(f"[red]Found {len(issues)} issue(s):[/red]")
        for i, issue in enumerate(issues, 1):
            console.print(f"  {i}. {issue}")
        sys.exit(1)
    else:
        console.print(f"[green]All checks passed.[/green] {len(plugins)} plugin(s) found.")


def main():
    parser = argparse.ArgumentParser(description="Plugin Runtime Manager")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    subparsers.add_parser("list", help="List all plugins")

    # info
    info_parser = subparsers.add_parser("info", help="Show plugin details")
    info_parser.add_argument("plugin_id", help="Plugin ID")

    # tools
    tools_parser = subparsers.add_parser("tools", help="List the tools a plugin declares")
    tools_parser.add_argument("plugin_id", help="Plugin ID")

    # enable
    enable_parser = subparsers.add_parser("enable", help="Enable a plugin for an organization")
    enable_parser.add_argument("plugin_id", help="Plugin ID")
    enable_parser.add_argument("org_id", help="Organization ID")

    # disable
    disable_parser = subparsers.add_parser("disable", help="Disable a plugin for an organization")
    disable_parser.add_argument("plugin_id", help="Plugin ID")
    disable_parser.add_argument("org_id", help="Organization ID")

    # install
    install_parser = subparsers.add_parser("install", help="Install a plugin from local path")
    install_parser.add_argument("path", help="Path to plugin directory")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "info": cmd_info,
        "tools": cmd_tools,
        "enable": cmd_enable,
        "disable": cmd_disable,
        "install": cmd_install,
        "doctor": cmd_doctor,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
