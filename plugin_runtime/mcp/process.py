"""Child process utilities: graceful termination and one-shot commands."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from plugin_runtime.constants import COMMAND_TIMEOUT, KILL_GRACE_PERIOD
from plugin_runtime.errors import McpStartError

logger = logging.getLogger(__name__)


def merge_env(extra: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Inherited environment with ``extra`` merged over it."""
    return {**os.environ, **(extra or {})}


async def kill_gracefully(
    process: asyncio.subprocess.Process,
    grace_period: float = KILL_GRACE_PERIOD,
) -> Optional[int]:
    """Send SIGTERM, wait up to ``grace_period``, then SIGKILL.

    Returns only once the process has actually exited.

    Returns:
        The exit code of the process
    """
    if process.returncode is not None:
        return process.returncode

    try:
        process.terminate()
    except ProcessLookupError:
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=grace_period)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} still alive after {grace_period}s, sending SIGKILL")

    try:
        process.kill()
    except ProcessLookupError:
        pass
    return await process.wait()


async def run_command(
    command: str,
    cwd: Path,
    env: Optional[Dict[str, str]] = None,
    timeout: float = COMMAND_TIMEOUT,
    label: str = "command",
) -> None:
    """Run a one-shot shell command (install/build) to completion.

    Raises:
        McpStartError: on non-zero exit or timeout
    """
    logger.info(f"Running {label} in {cwd}: {command}")
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        env=merge_env(env),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        output, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await kill_gracefully(process)
        raise McpStartError(f"{label} timed out after {timeout}s: {command}")

    if process.returncode != 0:
        tail = output.decode("utf-8", errors="replace").strip().splitlines()[-10:]
        for line in tail:
            logger.error(f"[{label}] {line}")
        raise McpStartError(f"{label} failed with exit code {process.returncode}: {command}")
    logger.debug(f"{label} completed: {command}")
