"""Recursive redaction of tool-call payloads. Total: never raises.

Everything that reaches the ledger or a live observer passes through here
first. Sensitive keys are dropped outright (not masked) so neither the
value nor the presence of a secret leaks. Long strings are replaced by a
marker carrying only their length, and secret-shaped strings by a typed
marker, whatever their length.

Usage:
    sanitizer = Sanitizer(max_string=160, sensitive_keys=DEFAULT_SENSITIVE_KEYS_RE)
    clean = sanitizer.sanitize({"command": "ls", "apiKey": "sk-..."})
    # -> {"command": "ls"}
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

DEFAULT_SENSITIVE_KEYS_RE = (
    "(token|secret|password|authorization|cookie|apiKey|apikey|bearer|"
    "accessToken|refreshToken|privateKey)"
)

# Secret-token shapes redacted regardless of length: (pattern, marker kind)
SECRET_SHAPES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^sk-[A-Za-z0-9_-]{10,}$"), "sk"),
    (re.compile(r"^Bearer\s+\S+", re.IGNORECASE), "bearer"),
]

# Host payloads are acyclic; this only caps pathological nesting.
MAX_DEPTH = 32


def compile_sensitive_keys(pattern: str | None = None, extra_keys: list[str] | None = None) -> re.Pattern[str]:
    """Compile the sensitive-key pattern, OR-ing in any configured extra key names."""
    parts = [pattern or DEFAULT_SENSITIVE_KEYS_RE]
    parts.extend(re.escape(k) for k in (extra_keys or []) if k)
    return re.compile("|".join(f"(?:{p})" for p in parts), re.IGNORECASE)


class Sanitizer:
    """Structural redaction over JSON-like values."""

    def __init__(self, max_string: int = 160, sensitive_keys: str | re.Pattern[str] | None = None) -> None:
        self.max_string = max_string
        if isinstance(sensitive_keys, re.Pattern):
            self.sensitive_keys = sensitive_keys
        else:
            self.sensitive_keys = compile_sensitive_keys(sensitive_keys)

    def is_sensitive_key(self, key: str) -> bool:
        return bool(self.sensitive_keys.search(key))

    def sanitize(self, value: Any, max_string: int | None = None) -> Any:
        """Return a redacted copy of ``value``. ``max_string`` overrides the configured limit."""
        limit = self.max_string if max_string is None else max_string
        try:
            return self._walk(value, limit, 0)
        except Exception:
            return "<redacted:unserializable>"

    __call__ = sanitize

    def _walk(self, value: Any, limit: int, depth: int) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            return self._string(value, limit)
        if depth >= MAX_DEPTH:
            return "<redacted:depth>"
        if isinstance(value, Mapping):
            out: dict[str, Any] = {}
            for key, item in value.items():
                key = key if isinstance(key, str) else str(key)
                if self.is_sensitive_key(key):
                    continue
                out[key] = self._walk(item, limit, depth + 1)
            return out
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._walk(item, limit, depth + 1) for item in value]
        try:
            text = str(value)
        except Exception:
            return "<redacted:unserializable>"
        return self._string(text, limit)

    def _string(self, text: str, limit: int) -> str:
        if len(text) > limit:
            return f"<redacted:{len(text)}>"
        for pattern, kind in SECRET_SHAPES:
            if pattern.search(text):
                return f"<redacted:{kind}>"
        return text


def sanitize(value: Any, max_string_length: int = 160, sensitive_key_pattern: str | None = None) -> Any:
    """One-shot form of :meth:`Sanitizer.sanitize`."""
    return Sanitizer(max_string_length, sensitive_key_pattern).sanitize(value)
