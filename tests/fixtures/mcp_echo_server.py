"""Minimal stdio MCP server used by the process manager tests."""

import json
import os
import sys
import time

TOOLS = [
    {
        "name": "echo",
        "description": "Echo the given text",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "slow",
        "description": "Sleep before answering",
        "inputSchema": {
            "type": "object",
            "properties": {"seconds": {"type": "number"}},
        },
    },
    {"name": "fail", "description": "Always reports an error"},
    {"name": "env", "description": "Return an environment variable"},
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def text(value, is_error=False):
    return {"content": [{"type": "text", "text": value}], "isError": is_error}


def call_tool(name, arguments):
    if name == "echo":
        return text(arguments.get("text", ""))
    if name == "slow":
        time.sleep(float(arguments.get("seconds", 1)))
        return text("done")
    if name == "fail":
        return text("something broke", is_error=True)
    if name == "env":
        return text(os.environ.get(arguments.get("name", ""), ""))
    return None


def serve(after_tools_listed=None):
    print("echo server ready", file=sys.stderr, flush=True)
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        method = message.get("method")
        msg_id = message.get("id")
        if msg_id is None:
            continue
        if method == "initialize":
            send({
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": "2024-11-05",
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "echo", "version": "0.1.0"},
                },
            })
        elif method == "tools/list":
            send({"jsonrpc": "2.0", "id": msg_id, "result": {"tools": TOOLS}})
            if after_tools_listed is not None:
                after_tools_listed()
        elif method == "tools/call":
            params = message.get("params") or {}
            result = call_tool(params.get("name"), params.get("arguments") or {})
            if result is None:
                send({"jsonrpc": "2.0", "id": msg_id, "error": {"code": -32602, "message": "Unknown tool"}})
            else:
                send({"jsonrpc": "2.0", "id": msg_id, "result": result})
        else:
            send({"jsonrpc": "2.0", "id": msg_id, "error": {"code": -32601, "message": "Method not found"}})


if __name__ == "__main__":
    # Plain text on stdout must be skipped by the client
    print("starting up", flush=True)
    serve()
