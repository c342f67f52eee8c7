"""Forward a host lifecycle hook to a running gateway. Never raises.

For hosts that run hooks as separate processes: the hook payload arrives
as JSON on stdin and is POSTed to ``<url>/api/hooks/<hook_name>``. Like
any audit tap, a failure here must leave the calling hook unaffected, so
errors are logged and swallowed and the process always exits 0.

Usage from a hook:
    echo '{"event": {...}, "ctx": {...}}' | tooltrace-forward before_tool_call
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import httpx

logger = logging.getLogger(__name__)

DEFAULT_URL = os.environ.get("TOOLTRACE_URL", "http://127.0.0.1:8790/ledger")
DEFAULT_TIMEOUT = 2.0


def build_envelope(payload: object) -> dict:
    """Accept ``{"event", "ctx"}`` as-is; treat any other object as a bare event."""
    if isinstance(payload, dict) and ("event" in payload or "ctx" in payload):
        return {"event": payload.get("event") or {}, "ctx": payload.get("ctx") or {}}
    return {"event": payload if isinstance(payload, dict) else {}, "ctx": {}}


def forward_hook_event(
    hook_name: str,
    payload: object,
    base_url: str = DEFAULT_URL,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> bool:
    """POST one hook payload. Returns True on a 2xx reply, False on any failure."""
    url = f"{base_url.rstrip('/')}/api/hooks/{hook_name}"
    try:
        if client is None:
            with httpx.Client(timeout=timeout) as own_client:
                response = own_client.post(url, json=build_envelope(payload))
        else:
            response = client.post(url, json=build_envelope(payload))
        if response.is_success:
            return True
        logger.debug("Hook %s rejected by %s: %s", hook_name, url, response.status_code)
        return False
    except Exception as exc:
        logger.debug("Hook %s not forwarded to %s: %s", hook_name, url, exc)
        return False


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Forward a hook payload (JSON on stdin) to tooltrace")
    parser.add_argument("hook", help="before_tool_call, after_tool_call or tool_result_persist")
    parser.add_argument("--url", default=DEFAULT_URL, help="Gateway base URL including path prefix")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    args = parser.parse_args(argv)

    try:
        payload = json.loads(sys.stdin.read() or "{}")
    except (json.JSONDecodeError, OSError):
        payload = {}
    forward_hook_event(args.hook, payload, base_url=args.url, timeout=args.timeout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
