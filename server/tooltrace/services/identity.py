"""Session identity: labels and channels from several host-owned files.

Three maps are read, never written:

- the session registry (session key -> session id, channel, origin),
- the session-meta file (session id -> human label, channel),
- the cron job store (job id -> job name).

Each refresh builds a new immutable :class:`IdentitySnapshot` and swaps it
in with a single assignment. A map that fails to load, or loads empty,
keeps its previous contents: stale but valid beats blank.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)

CRON_MARKER = ":cron:"
CRON_CHANNEL = "cron"

_NAME_RE = re.compile(r"^-\s*\*\*Name:\*\*\s*(.+)$", re.MULTILINE)
_ORIGIN_ID_RE = re.compile(r"\bid:(\d+)\b")


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    channel: str | None = None
    last_recipient: str | None = None
    fallback_label: str | None = None


@dataclass(frozen=True)
class SessionMeta:
    label: str = ""
    channel: str | None = None
    last_recipient: str | None = None


def _frozen(d: dict | None = None) -> Mapping:
    return MappingProxyType(dict(d or {}))


@dataclass(frozen=True)
class IdentitySnapshot:
    sessions: Mapping[str, SessionInfo] = field(default_factory=_frozen)
    meta: Mapping[str, SessionMeta] = field(default_factory=_frozen)
    cron_names: Mapping[str, str] = field(default_factory=_frozen)


# -- Loaders (each returns {} on any failure) ---------------------------------


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        return None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def load_agent_name(identity_path: Path) -> str | None:
    """Read the display name from the first ``- **Name:** ...`` line."""
    try:
        text = identity_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    match = _NAME_RE.search(text)
    return match.group(1).strip() if match else None


def load_session_registry(path: Path) -> dict[str, SessionInfo]:
    """Parse sessions.json: ``{sessionKey: {sessionId, channel, origin, deliveryContext}}``."""
    raw = _read_json(path)
    if not isinstance(raw, dict):
        return {}
    out: dict[str, SessionInfo] = {}
    for session_key, info in raw.items():
        if not isinstance(info, dict) or not _str_or_none(info.get("sessionId")):
            continue
        origin = info.get("origin") if isinstance(info.get("origin"), dict) else {}
        delivery = info.get("deliveryContext") if isinstance(info.get("deliveryContext"), dict) else {}
        origin_label = _str_or_none(origin.get("label"))
        delivery_to = _str_or_none(delivery.get("to"))

        last_recipient = delivery_to
        if not last_recipient and origin_label:
            m = _ORIGIN_ID_RE.search(origin_label)
            if m:
                last_recipient = m.group(1)

        out[session_key] = SessionInfo(
            session_id=info["sessionId"],
            channel=_str_or_none(info.get("channel"))
            or _str_or_none(origin.get("channel"))
            or _str_or_none(delivery.get("channel")),
            last_recipient=last_recipient,
            fallback_label=origin_label or delivery_to or session_key,
        )
    return out


def load_session_meta(path: Path) -> dict[str, SessionMeta]:
    """Parse session-meta.json: ``{"sessions": {sessionId: {label, channel, lastTo}}}``."""
    raw = _read_json(path)
    sessions = raw.get("sessions") if isinstance(raw, dict) else None
    if not isinstance(sessions, dict):
        return {}
    out: dict[str, SessionMeta] = {}
    for session_id, info in sessions.items():
        if not isinstance(info, dict):
            continue
        out[session_id] = SessionMeta(
            label=_str_or_none(info.get("label"))
            or _str_or_none(info.get("displayName"))
            or _str_or_none(info.get("key"))
            or "",
            channel=_str_or_none(info.get("channel")),
            last_recipient=_str_or_none(info.get("lastTo")),
        )
    return out


def load_cron_names(path: Path) -> dict[str, str]:
    """Parse jobs.json; ``jobs`` may be a list of jobs or a mapping of id -> job."""
    raw = _read_json(path)
    jobs = raw.get("jobs") if isinstance(raw, dict) else None
    if isinstance(jobs, list):
        entries = [(job.get("id"), job) for job in jobs if isinstance(job, dict)]
    elif isinstance(jobs, dict):
        entries = [((job.get("id") or key), job) for key, job in jobs.items() if isinstance(job, dict)]
    else:
        return {}
    out: dict[str, str] = {}
    for job_id, job in entries:
        name = job.get("name")
        if isinstance(job_id, str) and isinstance(name, str) and name.strip():
            out[job_id] = name.strip()
    return out


# -- Resolver ----------------------------------------------------------------


class IdentityResolver:
    """Resolve session keys to labels/channels over the current snapshot."""

    def __init__(
        self,
        registry_path: Path,
        meta_path: Path,
        cron_path: Path,
        main_session_key: str = "agent:main:main",
        refresh_seconds: float = 15,
        startup_retry_seconds: float = 1,
        startup_retry_window_seconds: float = 15,
    ) -> None:
        self.registry_path = registry_path
        self.meta_path = meta_path
        self.cron_path = cron_path
        self.main_session_key = main_session_key
        self.refresh_seconds = refresh_seconds
        self.startup_retry_seconds = startup_retry_seconds
        self.startup_retry_window_seconds = startup_retry_window_seconds
        self.snapshot = IdentitySnapshot()
        self._tasks: list[asyncio.Task] = []

    # Reloading

    def reload(self) -> IdentitySnapshot:
        """Reload all three maps; empty results keep the previous map."""
        current = self.snapshot
        sessions = load_session_registry(self.registry_path)
        meta = load_session_meta(self.meta_path)
        cron_names = load_cron_names(self.cron_path)
        self.snapshot = IdentitySnapshot(
            sessions=_frozen(sessions) if sessions else current.sessions,
            meta=_frozen(meta) if meta else current.meta,
            cron_names=_frozen(cron_names) if cron_names else current.cron_names,
        )
        return self.snapshot

    def reload_session_meta(self) -> bool:
        """Reload only the session-meta map. True if a non-empty map was swapped in."""
        meta = load_session_meta(self.meta_path)
        if not meta:
            return False
        self.snapshot = replace(self.snapshot, meta=_frozen(meta))
        return True

    # Lookups

    def session_info(self, session_key: str | None) -> SessionInfo | None:
        return self.snapshot.sessions.get(session_key) if session_key else None

    def _meta_label(self, session_id: str | None) -> str | None:
        if not session_id:
            return None
        meta = self.snapshot.meta.get(session_id)
        return meta.label if meta and meta.label else None

    def resolve_label(self, session_key: str | None, session_id: str | None, fallback: str | None = None) -> str | None:
        label = self._meta_label(session_id)
        if label:
            return label

        key = session_key or ""
        if CRON_MARKER in key:
            job_id = key.split(CRON_MARKER, 1)[1]
            name = self.snapshot.cron_names.get(job_id)
            if name:
                return f"cron:{name}"

        # The periodic refresh may not have run yet.
        if self.reload_session_meta():
            label = self._meta_label(session_id)
            if label:
                return label

        return fallback

    def resolve_channel(
        self, session_key: str | None, session_id: str | None, fallback: str | None = None
    ) -> str | None:
        if session_id:
            meta = self.snapshot.meta.get(session_id)
            if meta and meta.channel:
                return meta.channel
        key = session_key or ""
        if key == self.main_session_key:
            info = self.snapshot.sessions.get(key)
            if info and info.channel:
                return info.channel
        if CRON_MARKER in key:
            return CRON_CHANNEL
        return fallback

    # Scheduled refresh

    def start(self) -> None:
        """Load once, then start the periodic refresh (and startup fast-retry if needed)."""
        self.reload()
        self._tasks.append(asyncio.create_task(self._refresh_loop()))
        if not self.snapshot.meta:
            self._tasks.append(asyncio.create_task(self._startup_retry()))
        logger.info(
            "Identity maps loaded: %d sessions, %d labels, %d cron jobs",
            len(self.snapshot.sessions),
            len(self.snapshot.meta),
            len(self.snapshot.cron_names),
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _reload_in_thread(self) -> None:
        try:
            await asyncio.to_thread(self.reload)
        except Exception as exc:
            logger.warning("Identity refresh failed: %s", exc)

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_seconds)
            await self._reload_in_thread()

    async def _startup_retry(self) -> None:
        """Poll quickly until session-meta has at least one label, or the window closes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_retry_window_seconds
        while loop.time() < deadline:
            await asyncio.sleep(self.startup_retry_seconds)
            await self._reload_in_thread()
            if self.snapshot.meta:
                logger.info("Session labels available after startup retry")
                return
