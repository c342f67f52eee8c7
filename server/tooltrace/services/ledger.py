"""Append-only JSONL ledger of tool-call records.

One writer (the pipeline) appends whole lines; readers tail or stream the
file concurrently without locking. Lines that fail to parse are passed
through verbatim by readers rather than dropped.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_TAIL_LINES = 2000
MAX_EXPORT_LINES = 500_000


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LedgerWriter:
    """Durable line log with bounded tail reads and streaming export."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def ensure_dir(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: dict) -> bool:
        """Append one record as a JSON line. Never raises; returns False on failure."""
        try:
            line = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
            self.ensure_dir()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to append ledger record to %s: %s", self.path, exc)
            return False

    def tail(self, max_lines: int = 200, cap: int = MAX_TAIL_LINES) -> list[str]:
        """Return at most the last ``max_lines`` non-empty lines, oldest first."""
        limit = max(1, min(cap, max_lines))
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                return list(deque((ln for ln in (raw.rstrip("\r\n") for raw in f) if ln), maxlen=limit))
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Failed to read ledger %s: %s", self.path, exc)
            return []

    def stream_export(self, since: datetime | None = None) -> Iterator[str]:
        """Yield ledger lines lazily, skipping records timestamped before ``since``.

        Lines that cannot be parsed, or carry no parsable timestamp, are
        always yielded.
        """
        try:
            f = open(self.path, encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return
        with f:
            for raw in f:
                line = raw.rstrip("\r\n")
                if not line:
                    continue
                if since is not None and _is_before(line, since):
                    continue
                yield line


def _is_before(line: str, since: datetime) -> bool:
    try:
        obj = json.loads(line)
    except ValueError:
        return False
    ts = parse_timestamp(obj.get("timestamp")) if isinstance(obj, dict) else None
    return ts is not None and ts < since
