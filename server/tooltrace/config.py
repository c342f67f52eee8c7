"""Configuration for the tooltrace gateway.

Settings cascade, later wins: DEFAULTS -> JSON settings file ->
TOOLTRACE_* environment variables -> constructor overrides. The settings
file is $TOOLTRACE_CONFIG, or <workspaceDir>/.tooltrace/config.json.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

from .sanitizer import DEFAULT_SENSITIVE_KEYS_RE, compile_sensitive_keys

DEFAULTS: dict = {
    "enabled": True,
    "host": "127.0.0.1",
    "port": 8790,
    "pathPrefix": "/ledger",
    "ledgerPath": None,
    "maxString": 160,
    "dropKeysRegex": DEFAULT_SENSITIVE_KEYS_RE,
    "extraSensitiveKeys": [],
    "enableNotes": True,
    "maxNoteLength": 2000,
    "agentName": None,
    "agentId": "main",
    "workspaceDir": None,
    "hostDir": None,
    "refreshSeconds": 15,
    "startupRetrySeconds": 1,
    "startupRetryWindowSeconds": 15,
    "heartbeatSeconds": 15,
    "matchWindowMs": 30000,
    "startQueueCap": 40,
    "dedupeCompletions": True,
    "subscriberQueueSize": 1000,
    "logLevel": "INFO",
    "corsOrigins": ["*"],
}

# env var -> (settings key, parser)
_ENV_KEYS = {
    "TOOLTRACE_ENABLED": ("enabled", "bool"),
    "TOOLTRACE_HOST": ("host", "str"),
    "TOOLTRACE_PORT": ("port", "int"),
    "TOOLTRACE_PATH_PREFIX": ("pathPrefix", "str"),
    "TOOLTRACE_LEDGER_PATH": ("ledgerPath", "str"),
    "TOOLTRACE_MAX_STRING": ("maxString", "int"),
    "TOOLTRACE_DROP_KEYS_REGEX": ("dropKeysRegex", "str"),
    "TOOLTRACE_ENABLE_NOTES": ("enableNotes", "bool"),
    "TOOLTRACE_AGENT_NAME": ("agentName", "str"),
    "TOOLTRACE_AGENT_ID": ("agentId", "str"),
    "TOOLTRACE_HOST_DIR": ("hostDir", "str"),
    "TOOLTRACE_LOG_LEVEL": ("logLevel", "str"),
    "TOOLTRACE_CORS_ORIGINS": ("corsOrigins", "list"),
}


def _parse_env(value: str, kind: str):
    if kind == "bool":
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    if kind == "int":
        return int(value)
    if kind == "list":
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


def _deep_merge(base: dict, override: Mapping) -> None:
    """Merge override into base, recursing into nested dicts."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value is not None:
            base[key] = value


def load_settings_file(path: Path) -> dict:
    """Read a JSON settings object; missing or malformed files yield {}."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def normalize_prefix(prefix: str | None) -> str:
    """'/ledger/' -> '/ledger', 'ledger' -> '/ledger', '/' or '' -> ''."""
    stripped = (prefix or "").strip().strip("/")
    return f"/{stripped}" if stripped else ""


class TraceConfig:
    """Resolved gateway configuration."""

    def __init__(self, overrides: Mapping | None = None, environ: Mapping[str, str] | None = None) -> None:
        env = os.environ if environ is None else environ
        overrides = dict(overrides or {})

        self.workspace_dir = Path(
            overrides.get("workspaceDir") or env.get("TOOLTRACE_WORKSPACE_DIR") or os.getcwd()
        ).expanduser()

        settings = json.loads(json.dumps(DEFAULTS))
        settings_path = Path(env["TOOLTRACE_CONFIG"]) if env.get("TOOLTRACE_CONFIG") else (
            self.workspace_dir / ".tooltrace" / "config.json"
        )
        _deep_merge(settings, load_settings_file(settings_path))
        _deep_merge(settings, {key: _parse_env(env[var], kind) for var, (key, kind) in _ENV_KEYS.items() if var in env})
        _deep_merge(settings, overrides)
        self.settings = settings
        self.settings_path = settings_path

        self.enabled = bool(settings["enabled"])
        self.host = settings["host"]
        self.port = int(settings["port"])
        self.path_prefix = normalize_prefix(settings["pathPrefix"])
        self.agent_id = settings["agentId"] or "main"
        self.host_dir = Path(settings["hostDir"] or Path.home() / ".openclaw").expanduser()
        self.ledger_path = Path(
            settings["ledgerPath"] or self.workspace_dir / "memory" / "tooltrace.jsonl"
        ).expanduser()

        self.max_string = int(settings["maxString"])
        self.max_note_length = int(settings["maxNoteLength"])
        self.sensitive_keys_re = compile_sensitive_keys(settings["dropKeysRegex"], settings["extraSensitiveKeys"])

        self.enable_notes = bool(settings["enableNotes"])
        self.agent_name = settings["agentName"]

        self.refresh_seconds = float(settings["refreshSeconds"])
        self.startup_retry_seconds = float(settings["startupRetrySeconds"])
        self.startup_retry_window_seconds = float(settings["startupRetryWindowSeconds"])
        self.heartbeat_seconds = float(settings["heartbeatSeconds"])
        self.match_window_ms = int(settings["matchWindowMs"])
        self.start_queue_cap = int(settings["startQueueCap"])
        self.dedupe_completions = bool(settings["dedupeCompletions"])
        self.subscriber_queue_size = int(settings["subscriberQueueSize"])
        self.log_level = str(settings["logLevel"]).upper()
        self.cors_origins: list[str] = list(settings["corsOrigins"] or ["*"])

    @property
    def main_session_key(self) -> str:
        return f"agent:{self.agent_id}:main"

    @property
    def identity_path(self) -> Path:
        return self.workspace_dir / "IDENTITY.md"

    @property
    def session_registry_path(self) -> Path:
        return self.host_dir / "agents" / self.agent_id / "sessions" / "sessions.json"

    @property
    def session_meta_path(self) -> Path:
        return self.workspace_dir / "memory" / "session-meta.json"

    @property
    def cron_jobs_path(self) -> Path:
        return self.host_dir / "cron" / "jobs.json"
