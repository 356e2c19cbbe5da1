"""Plugin worker: one process serving one plugin for one organization."""

import asyncio
import logging
import os
from typing import List, Mapping, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from plugin_runtime.constants import PLUGIN_TOOL_LOG_DIR
from plugin_runtime.errors import PluginRuntimeError
from plugin_runtime.plugins.manager import PluginHost
from plugin_runtime.plugins.manifest import load_manifest
from plugin_runtime.plugins.store import OrgStateStore
from plugin_runtime.runner.bootstrap import RunnerArgs, load_org_data, parse_args
from plugin_runtime.runner.http_server import create_http_app
from plugin_runtime.tools.bridge import ToolExecutionBridge
from plugin_runtime.tools.tool_log import JsonlToolLog

logger = logging.getLogger(__name__)


async def bootstrap_worker(args: RunnerArgs, environ: Optional[Mapping[str, str]] = None) -> Tuple[PluginHost, FastAPI]:
    """Load, initialize and start the plugin for the worker's organization.

    Raises:
        ManifestError, LoadError, HookFailure, WorkerConfigError: the worker must exit
    """
    manifest = load_manifest(args.plugin_path)
    org_data = load_org_data(args, environ)

    store = OrgStateStore()
    store.set_enabled(manifest.id, org_data.org.id, True, name=org_data.org.name)
    if org_data.config:
        store.update_config(manifest.id, org_data.org.id, org_data.config)
    if org_data.auth is not None:
        store.save_auth(manifest.id, org_data.org.id, org_data.auth)

    host = PluginHost(manifest, store, source="worker")
    await host.initialize()
    await host.start_org(org_data.org.id)

    bridge = ToolExecutionBridge({host.id: host}, JsonlToolLog(PLUGIN_TOOL_LOG_DIR))
    app = create_http_app(host, org_data.org.id, bridge)
    return host, app


async def serve(args: RunnerArgs) -> None:
    host, app = await bootstrap_worker(args)
    config = uvicorn.Config(app, host="127.0.0.1", port=args.port, log_level=os.getenv("LOG_LEVEL", "info").lower())
    server = uvicorn.Server(config)
    logger.info(f"Plugin worker {host.id} for org {args.org_id} listening on port {args.port} ({args.mode} mode)")
    try:
        await server.serve()
    finally:
        await host.shutdown()


def run_worker(argv: Optional[List[str]] = None) -> int:
    """Entry point. Returns the process exit code."""
    try:
        args = parse_args(argv)
        asyncio.run(serve(args))
    except PluginRuntimeError as e:
        logger.error(f"Plugin worker failed: {e}")
        return 1
    return 0
