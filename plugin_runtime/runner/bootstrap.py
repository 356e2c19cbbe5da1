"""Runner invocation surface: command line flags and organization context.

    run_plugin.py --plugin-path ./plugins/bundled/stripe --org-id org-1 --port 5100 --mode test

Production mode reads the organization from PLUGIN_ORG_CONFIG and the optional
auth state from PLUGIN_ORG_AUTH. Test mode uses fixtures.
"""

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from plugin_runtime.constants import ORG_AUTH_ENV, ORG_CONFIG_ENV
from plugin_runtime.errors import WorkerConfigError
from plugin_runtime.plugins.contexts import Org

logger = logging.getLogger(__name__)

MODES = ("production", "test")


@dataclass
class RunnerArgs:
    plugin_path: Path
    org_id: str
    port: int
    mode: str = "production"


@dataclass
class OrgRuntimeData:
    """Organization, config values and auth state a worker runs with."""

    org: Org
    config: Dict[str, Any] = field(default_factory=dict)
    auth: Optional[Dict[str, Any]] = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one plugin worker for one organization")
    parser.add_argument("--plugin-path", required=True, help="Plugin package directory")
    parser.add_argument("--org-id", required=True, help="Organization id")
    parser.add_argument("--port", required=True, type=int, help="HTTP port for the worker")
    parser.add_argument("--mode", choices=MODES, default="production", help="production or test")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> RunnerArgs:
    args = build_parser().parse_args(argv)
    if not (0 < args.port < 65536):
        raise WorkerConfigError(f"Invalid port: {args.port}")
    if not args.org_id.strip():
        raise WorkerConfigError("--org-id must not be empty")
    return RunnerArgs(
        plugin_path=Path(args.plugin_path).resolve(),
        org_id=args.org_id.strip(),
        port=args.port,
        mode=args.mode,
    )


def _parse_json(environ: Mapping[str, str], name: str) -> Any:
    try:
        return json.loads(environ[name])
    except json.JSONDecodeError as e:
        raise WorkerConfigError(f"{name} is not valid JSON: {e}")


def load_org_data(args: RunnerArgs, environ: Optional[Mapping[str, str]] = None) -> OrgRuntimeData:
    """Resolve the organization context for the worker.

    Raises:
        WorkerConfigError: production mode with missing or malformed context
    """
    if args.mode == "test":
        logger.info(f"Test mode: using fixture organization for {args.org_id}")
        return OrgRuntimeData(org=Org(id=args.org_id, name=f"Test Org {args.org_id}"))

    environ = os.environ if environ is None else environ
    if not environ.get(ORG_CONFIG_ENV):
        raise WorkerConfigError(f"{ORG_CONFIG_ENV} is required in production mode")

    data = _parse_json(environ, ORG_CONFIG_ENV)
    if not isinstance(data, dict):
        raise WorkerConfigError(f"{ORG_CONFIG_ENV} must be a JSON object")
    org = data.get("org")
    if not isinstance(org, dict) or not isinstance(org.get("id"), str) or not org["id"]:
        raise WorkerConfigError(f"{ORG_CONFIG_ENV} must contain org.id")
    if org["id"] != args.org_id:
        raise WorkerConfigError(
            f"{ORG_CONFIG_ENV} is for organization '{org['id']}', worker was started for '{args.org_id}'"
        )
    config = data.get("config") or {}
    if not isinstance(config, dict):
        raise WorkerConfigError(f"{ORG_CONFIG_ENV} config must be a JSON object")

    auth = None
    if environ.get(ORG_AUTH_ENV):
        auth = _parse_json(environ, ORG_AUTH_ENV)
        if not isinstance(auth, dict):
            raise WorkerConfigError(f"{ORG_AUTH_ENV} must be a JSON object")

    logger.info(f"Loaded organization context for {org['id']} ({len(config)} config value(s), auth={'yes' if auth else 'no'})")
    return OrgRuntimeData(
        org=Org(id=org["id"], name=org.get("name") or org["id"]),
        config=config,
        auth=auth,
    )
