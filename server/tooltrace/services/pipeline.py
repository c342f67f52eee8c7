"""Event pipeline: host lifecycle hooks -> sanitized ledger records -> live observers.

Per tool invocation:

    before_tool_call     STARTED    sanitize params, queue a start; nothing persisted
    tool_result_persist  COMPLETED  join the queued start, build a record, append, publish
    after_tool_call      COMPLETED  self-contained record (params + duration), append, publish

``after_tool_call`` does not fire on every host build, so both completion
paths stay live; when both do fire for one call, the second is suppressed
(see CompletionDeduplicator). An invocation that never completes leaves a
start that ages out of the correlator; no record is written for it.

Handlers never raise into the host: observability must not break tool
execution.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from ..extract import fingerprint, pick_paths, pick_url, summarize
from ..models.record import AgentRef, EventRecord, Phase, SessionRef
from ..sanitizer import Sanitizer
from ..sse.broadcaster import Broadcaster
from .correlator import CompletionDeduplicator, StartCorrelator
from .identity import IdentityResolver
from .ledger import LedgerWriter

logger = logging.getLogger(__name__)

BEFORE_TOOL_CALL = "before_tool_call"
AFTER_TOOL_CALL = "after_tool_call"
TOOL_RESULT_PERSIST = "tool_result_persist"
NOTE_TOOL = "note"


class HookHost(Protocol):
    def on(self, hook_name: str, handler: Callable[[dict, dict], Any]) -> Any: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _compact(details: dict) -> dict:
    return {k: v for k, v in details.items() if v is not None}


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


class TracePipeline:
    """Orchestrates sanitizer, correlator, identity resolver, ledger and fanout."""

    def __init__(
        self,
        sanitizer: Sanitizer,
        correlator: StartCorrelator,
        resolver: IdentityResolver,
        ledger: LedgerWriter,
        broadcaster: Broadcaster,
        agent_id: str = "main",
        agent_display_name: str | None = None,
        match_window_ms: int = 30_000,
        deduplicator: CompletionDeduplicator | None = None,
        max_note_length: int = 2000,
        enabled: bool = True,
        clock: Callable[[], str] = _now_iso,
    ) -> None:
        self.sanitizer = sanitizer
        self.correlator = correlator
        self.resolver = resolver
        self.ledger = ledger
        self.broadcaster = broadcaster
        self.agent_id = agent_id
        self.agent_display_name = agent_display_name or agent_id
        self.match_window_ms = match_window_ms
        self.deduplicator = deduplicator
        self.max_note_length = max_note_length
        self.enabled = enabled
        self._clock = clock
        self._last_timestamp = ""
        self.handlers: dict[str, Callable[[dict, dict], EventRecord | None]] = {
            BEFORE_TOOL_CALL: self.on_before_tool_call,
            AFTER_TOOL_CALL: self.on_after_tool_call,
            TOOL_RESULT_PERSIST: self.on_tool_result_persist,
        }

    # -- Host wiring ----------------------------------------------------------

    def attach(self, host: HookHost) -> None:
        """Register the lifecycle handlers with an in-process host."""
        for name, handler in self.handlers.items():
            host.on(name, handler)

    def dispatch(self, hook_name: str, event: dict, ctx: dict) -> EventRecord | None:
        """Route a named hook to its handler. Raises KeyError for unknown hooks."""
        return self.handlers[hook_name](event, ctx)

    # -- Handlers -------------------------------------------------------------

    def on_before_tool_call(self, event: dict, ctx: dict) -> None:
        if not self.enabled:
            return None
        try:
            event, ctx = _as_dict(event), _as_dict(ctx)
            tool_name = str(event.get("toolName") or "")
            params = self.sanitizer.sanitize(event.get("params") or {})
            self.correlator.record_start(
                ctx.get("sessionKey"),
                tool_name,
                summary=summarize(tool_name, params),
                paths=pick_paths(params),
                url=pick_url(params),
            )
        except Exception:
            logger.exception("before_tool_call handler failed")
        return None

    def on_after_tool_call(self, event: dict, ctx: dict) -> EventRecord | None:
        if not self.enabled:
            return None
        try:
            event, ctx = _as_dict(event), _as_dict(ctx)
            session_key = ctx.get("sessionKey")
            tool_name = str(event.get("toolName") or ctx.get("toolName") or "")
            if self._is_duplicate(session_key, tool_name, AFTER_TOOL_CALL):
                return None

            params = self.sanitizer.sanitize(event.get("params") or {})
            summary = summarize(tool_name, params)
            error = self.sanitizer.sanitize(event.get("error"))
            record = self._build_record(
                ctx,
                tool_name,
                summary=summary,
                correlation_key=fingerprint(session_key, tool_name, summary),
                details={
                    "durationMs": self.sanitizer.sanitize(event.get("durationMs")),
                    "error": error or None,
                    "paths": pick_paths(params),
                    "url": pick_url(params),
                    "result": "error" if error else "ok",
                },
            )
            self.emit(record)
            return record
        except Exception:
            logger.exception("after_tool_call handler failed")
            return None

    def on_tool_result_persist(self, event: dict, ctx: dict) -> EventRecord | None:
        if not self.enabled:
            return None
        try:
            event, ctx = _as_dict(event), _as_dict(ctx)
            session_key = ctx.get("sessionKey")
            message = _as_dict(event.get("message"))
            msg = _as_dict(message.get("message")) or message
            tool_name = str(msg.get("toolName") or event.get("toolName") or ctx.get("toolName") or "")
            is_error = bool(msg.get("isError"))
            duration_ms = self.sanitizer.sanitize(_as_dict(msg.get("details")).get("durationMs"))

            start = self.correlator.consume_matching_start(session_key, tool_name, self.match_window_ms)
            if self._is_duplicate(session_key, tool_name, TOOL_RESULT_PERSIST):
                return None

            call_id = ctx.get("toolCallId") or msg.get("toolCallId")
            record = self._build_record(
                ctx,
                tool_name,
                summary=start.summary if start and start.summary else self.sanitizer.sanitize(tool_name),
                correlation_key=str(self.sanitizer.sanitize(call_id)) if call_id else None,
                details={
                    "durationMs": duration_ms,
                    "paths": start.paths if start else None,
                    "url": start.url if start else None,
                    "error": "tool error" if is_error else None,
                    "result": "error" if is_error else "ok",
                },
            )
            self.emit(record)
            return record
        except Exception:
            logger.exception("tool_result_persist handler failed")
            return None

    def submit_note(self, text: str, session_key: str | None = None) -> EventRecord:
        """Persist and publish a free-text note. ``text`` must already be non-empty."""
        summary = self.sanitizer.sanitize(text, max_string=self.max_note_length)
        record = self._build_record(
            {"sessionKey": session_key, "agentId": self.agent_id},
            NOTE_TOOL,
            summary=summary,
            details={"result": "ok"},
            phase=None,
        )
        self.emit(record)
        return record

    # -- Record construction --------------------------------------------------

    def emit(self, record: EventRecord) -> None:
        """Append to the ledger, then publish; publish order follows append order."""
        line = record.to_line_dict()
        self.ledger.append(line)
        self.broadcaster.publish(line)

    def _is_duplicate(self, session_key: str | None, tool_name: str, source: str) -> bool:
        if self.deduplicator is None:
            return False
        if self.deduplicator.is_duplicate(session_key, tool_name, source):
            logger.debug("Suppressed duplicate %s completion for %s/%s", source, session_key, tool_name)
            return True
        return False

    def _timestamp(self) -> str:
        ts = self._clock()
        if ts < self._last_timestamp:
            ts = self._last_timestamp
        self._last_timestamp = ts
        return ts

    def _agent(self, ctx: dict) -> AgentRef:
        agent_id = ctx.get("agentId") or self.agent_id
        name = self.agent_display_name if agent_id == self.agent_id else agent_id
        return AgentRef(id=str(agent_id), displayName=str(name))

    def _session(self, session_key: str | None) -> SessionRef:
        info = self.resolver.session_info(session_key)
        session_id = info.session_id if info else None
        return SessionRef(
            key=session_key,
            id=session_id,
            label=self.resolver.resolve_label(session_key, session_id, info.fallback_label if info else None),
            channel=self.resolver.resolve_channel(session_key, session_id, info.channel if info else None),
        )

    def _build_record(
        self,
        ctx: dict,
        tool_name: str,
        summary: str,
        details: dict,
        correlation_key: str | None = None,
        phase: Phase | None = Phase.DONE,
    ) -> EventRecord:
        session_key = ctx.get("sessionKey")
        return EventRecord(
            timestamp=self._timestamp(),
            agent=self._agent(ctx),
            session=self._session(str(session_key) if session_key else None),
            tool=tool_name,
            phase=phase,
            correlationKey=correlation_key,
            summary=summary,
            details=_compact(details),
        )
