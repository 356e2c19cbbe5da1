#!/usr/bin/env python3
"""Plugin worker entry point.

Usage:
    python run_plugin.py --plugin-path <dir> --org-id <id> --port <port> [--mode production|test]
"""

import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

log_level = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
)

from plugin_runtime.runner.worker import run_worker


def main() -> int:
    return run_worker()


if __name__ == "__main__":
    sys.exit(main())
