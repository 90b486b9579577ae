"""Minimal stdio MCP server used by the transport and session tests.

Usage: python fake_mcp_server.py [--no-version | --int-version] [--text-server-info] [--no-tools]

Notifications from the client are recorded and returned by a
``debug/notifications`` request.
"""

import json
import os
import sys
import threading
import time

TOOLS = [
    {
        "name": "echo",
        "description": "Echo the given text",
        "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
    },
    {"name": "add", "description": "Add two numbers"},
    {"name": "slow", "description": "Reply after a delay"},
    {"name": "fail", "description": "Always fails"},
    {"name": "split", "description": "Reply in fragments after a garbage line"},
    {"name": "exit", "description": "Terminate without replying"},
    {"description": "missing name"},
]

write_lock = threading.Lock()


def write_raw(data: bytes) -> None:
    with write_lock:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()


def reply(request_id, result=None, error=None) -> None:
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    write_raw((json.dumps(message) + "\n").encode("utf-8"))


def call_tool(request_id, params) -> None:
    name = params.get("name")
    args = params.get("arguments") or {}
    if name == "echo":
        reply(request_id, {"content": [{"type": "text", "text": args.get("text", "")}]})
    elif name == "add":
        reply(request_id, {"sum": args.get("a", 0) + args.get("b", 0)})
    elif name == "slow":
        time.sleep(args.get("seconds", 0.5))
        reply(request_id, "slept")
    elif name == "fail":
        reply(request_id, error={"code": -32000, "message": "tool failed"})
    elif name == "split":
        data = (json.dumps({"jsonrpc": "2.0", "id": request_id, "result": "reassembled été"}) + "\n").encode("utf-8")
        with write_lock:
            sys.stdout.buffer.write(b"this is not json\n\n")
            sys.stdout.buffer.flush()
            for start in range(0, len(data), 7):
                sys.stdout.buffer.write(data[start:start + 7])
                sys.stdout.buffer.flush()
                time.sleep(0.005)
    elif name == "exit":
        os._exit(0)
    else:
        reply(request_id, error={"code": -32601, "message": f"Unknown tool: {name}"})


def initialize_result(params) -> dict:
    result = {"capabilities": {"tools": {}}, "serverInfo": {"name": "fake", "version": "0.0.1"}}
    if "--text-server-info" in sys.argv:
        result["serverInfo"] = "fake 0.0.1"
    if "--int-version" in sys.argv:
        result["protocolVersion"] = 1
    elif "--no-version" not in sys.argv:
        result["protocolVersion"] = params["protocolVersion"]
    return result


def main() -> None:
    notifications = []
    sys.stderr.write("fake server ready\n")
    sys.stderr.flush()

    for raw in sys.stdin.buffer:
        line = raw.strip()
        if not line:
            continue
        message = json.loads(line)
        method = message.get("method")
        request_id = message.get("id")
        if request_id is None:
            notifications.append(method)
            continue
        if method == "initialize":
            reply(request_id, initialize_result(message["params"]))
        elif method == "tools/list":
            reply(request_id, {} if "--no-tools" in sys.argv else {"tools": TOOLS})
        elif method == "debug/notifications":
            reply(request_id, notifications)
        elif method == "tools/call":
            threading.Thread(target=call_tool, args=(request_id, message.get("params") or {}), daemon=True).start()
        elif method == "empty/list":
            reply(request_id, {})
        else:
            reply(request_id, error={"code": -32601, "message": f"Method not found: {method}"})


if __name__ == "__main__":
    main()
