#!/usr/bin/env python3
"""Fake portainer-mcp stdio server for bridge verification.

Purpose:
- Provide a deterministic stdio JSON-RPC server to test the subprocess
  lifecycle (spawn, line I/O, stderr forwarding, termination) without the
  real portainer-mcp binary or a Portainer instance.

Behavior:
- Prints a startup line on stderr
- Reads JSON-RPC messages from stdin (one per line)
- Replies with JSON-RPC 2.0 responses on stdout (one per line)
- Exits when stdin is closed (unless --linger)

Supported methods:
- ping: returns "pong"
- tools/list: returns a minimal tools list
- test/argv: returns the argument vector received
- test/noise: writes a non-JSON line before the response
- test/notify: emits a server notification, then the response
- test/hang: never answers
- test/crash: exits with status 3 (request or notification)

Flags:
- --banner: writes a non-JSON banner line on stdout at startup
- --linger: keeps running after stdin EOF (until signaled)
- --ignore-sigterm: ignores SIGTERM (forces the SIGKILL path)

Other arguments (--server, --api-token...) are accepted and ignored.
"""

from __future__ import annotations

import json
import signal
import sys
import time


def _write(obj: object) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _result(req_id: object, result: object) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _error(*, req_id: object | None, code: int, message: str) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": int(code), "message": message}}


def _tools_list(*, req_id: object | None) -> dict[str, object]:
    return _result(
        req_id,
        {
            "tools": [
                {
                    "name": "listEnvironments",
                    "description": "Liste les environnements Portainer",
                    "inputSchema": {"type": "object", "properties": {}, "additionalProperties": True},
                },
            ]
        },
    )


def _handle(req: dict[str, object]) -> None:
    req_id = req.get("id")
    method = req.get("method")

    if method == "test/crash":
        sys.stderr.write("fake-mcp: crash requested\n")
        sys.stderr.flush()
        raise SystemExit(3)
    if method == "test/hang" or req_id is None:
        # Notifications: pas de réponse
        return
    if method == "ping":
        _write(_result(req_id, "pong"))
        return
    if method == "tools/list":
        _write(_tools_list(req_id=req_id))
        return
    if method == "test/argv":
        _write(_result(req_id, sys.argv[1:]))
        return
    if method == "test/noise":
        sys.stdout.write("this is not json\n")
        sys.stdout.flush()
        _write(_result(req_id, "after-noise"))
        return
    if method == "test/notify":
        _write({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info", "data": "hello"}})
        _write(_result(req_id, "notified"))
        return

    _write(_error(req_id=req_id, code=-32601, message="Method not found"))


def main() -> int:
    if "--ignore-sigterm" in sys.argv:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    sys.stderr.write("fake-mcp: starting\n")
    sys.stderr.flush()
    if "--banner" in sys.argv:
        sys.stdout.write("Portainer MCP server ready\n")
        sys.stdout.flush()

    while True:
        raw = sys.stdin.buffer.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            _write(_error(req_id=None, code=-32700, message="Parse error"))
            continue

        if not isinstance(req, dict):
            _write(_error(req_id=None, code=-32600, message="Invalid Request"))
            continue
        _handle(req)

    if "--linger" in sys.argv:
        while True:
            time.sleep(0.1)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
