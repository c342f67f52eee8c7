"""Derive summaries, file paths and URLs from (already sanitized) tool params."""

from __future__ import annotations

from typing import Any

PATH_KEYS = ("path", "filePath", "file_path", "outPath", "jsonlPath")
MAX_PATHS = 6
MAX_COMMAND = 160


def pick_paths(params: Any) -> list[str]:
    """Collect distinct path-like string values, in first-seen order."""
    found: list[str] = []

    def walk(obj: Any) -> None:
        if isinstance(obj, list):
            for item in obj:
                walk(item)
            return
        if not isinstance(obj, dict):
            return
        for key, value in obj.items():
            if isinstance(value, str) and key in PATH_KEYS:
                found.append(value)
            elif isinstance(value, (dict, list)):
                walk(value)

    walk(params)
    return list(dict.fromkeys(found))[:MAX_PATHS]


def pick_url(params: Any) -> str | None:
    """Return the first non-empty string stored under a key containing ``url``."""
    candidates: list[str] = []

    def walk(obj: Any) -> None:
        if isinstance(obj, list):
            for item in obj:
                walk(item)
            return
        if not isinstance(obj, dict):
            return
        for key, value in obj.items():
            if isinstance(value, str) and "url" in key.lower():
                candidates.append(value)
            elif isinstance(value, (dict, list)):
                walk(value)

    walk(params)
    return next((c for c in candidates if c), None)


def _text(params: dict, key: str) -> str:
    value = params.get(key)
    return str(value) if value else ""


def summarize(tool_name: str, params: Any) -> str:
    """Short, tool-specific description of a call."""
    if not isinstance(params, dict):
        params = {}
    if tool_name == "exec":
        cmd = _text(params, "command")
        return cmd if len(cmd) <= MAX_COMMAND else cmd[: MAX_COMMAND - 3] + "..."
    if tool_name in ("write", "edit", "read"):
        return str(params.get("path") or params.get("filePath") or params.get("file_path") or "")
    if tool_name == "browser":
        return f"{_text(params, 'action')} {_text(params, 'targetUrl')}".strip()
    if tool_name == "message":
        return f"{_text(params, 'action')} {_text(params, 'channel')}".strip()
    if tool_name == "cron":
        return _text(params, "action").strip()
    return ""


def fingerprint(session_key: str | None, tool_name: str, summary: str) -> str:
    """Best-effort debug key for records that carry no host call id."""
    return f"{session_key or ''}|after|{tool_name}|{summary}"
