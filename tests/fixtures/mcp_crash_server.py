"""Completes the handshake and tools/list, then exits with code 1 shortly after."""

import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from mcp_echo_server import serve  # noqa: E402


def crash_soon():
    threading.Timer(0.3, os._exit, args=(1,)).start()


if __name__ == "__main__":
    serve(after_tools_listed=crash_soon)
