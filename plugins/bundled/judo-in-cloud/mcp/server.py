"""Stdio MCP server for Judo in Cloud.

Speaks newline-delimited JSON-RPC on stdin/stdout. Diagnostics go to stderr.
"""

import json
import sys

TOOLS = [
    {
        "name": "reset_password",
        "description": "Send a password reset email to a club member",
        "inputSchema": {
            "type": "object",
            "properties": {"email": {"type": "string"}},
            "required": ["email"],
        },
    },
    {
        "name": "lookup_member",
        "description": "Look up a club member by email",
        "inputSchema": {
            "type": "object",
            "properties": {"email": {"type": "string"}},
            "required": ["email"],
        },
    },
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def text_result(text, is_error=False):
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def call_tool(name, arguments):
    email = arguments.get("email", "")
    if "@" not in email:
        return text_result(f"Invalid email address: {email}", is_error=True)
    if name == "reset_password":
        return text_result(f"Password reset email sent to {email}")
    if name == "lookup_member":
        return text_result(json.dumps({"email": email, "active": True}))
    return None


def handle(message):
    method = message.get("method")
    msg_id = message.get("id")
    if msg_id is None:
        return
    if method == "initialize":
        send({
            "jsonrpc": "2.0",
            "id": msg_id,
            "result": {
                "protocolVersion": message.get("params", {}).get("protocolVersion", "2024-11-05"),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "judo-in-cloud", "version": "1.0.0"},
            },
        })
    elif method == "tools/list":
        send({"jsonrpc": "2.0", "id": msg_id, "result": {"tools": TOOLS}})
    elif method == "tools/call":
        params = message.get("params") or {}
        result = call_tool(params.get("name"), params.get("arguments") or {})
        if result is None:
            send({"jsonrpc": "2.0", "id": msg_id, "error": {"code": -32602, "message": f"Unknown tool: {params.get('name')}"}})
        else:
            send({"jsonrpc": "2.0", "id": msg_id, "result": result})
    elif method == "ping":
        send({"jsonrpc": "2.0", "id": msg_id, "result": {}})
    else:
        send({"jsonrpc": "2.0", "id": msg_id, "error": {"code": -32601, "message": f"Method not found: {method}"}})


def main():
    print("judo-in-cloud MCP server started", file=sys.stderr, flush=True)
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            print(f"Ignoring invalid JSON: {line[:80]}", file=sys.stderr, flush=True)
            continue
        handle(message)


if __name__ == "__main__":
    main()
