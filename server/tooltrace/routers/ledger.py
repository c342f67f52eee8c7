"""Ledger routes: dashboard page, live stream, recent tail, export, notes."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse, StreamingResponse
from sse_starlette import EventSourceResponse
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from ..app_state import TraceState
from ..deps import get_trace_state
from ..models.hooks import NoteSubmission
from ..services.ledger import MAX_EXPORT_LINES, MAX_TAIL_LINES, LedgerWriter, parse_timestamp
from ..sse.broadcaster import RECORD_EVENT, Broadcaster, encode_comment, encode_frame

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ledger"])

_UI_PATH = Path(__file__).parent.parent / "static" / "ui.html"
_NO_STORE = {"Cache-Control": "no-store"}
_NDJSON = "application/x-ndjson; charset=utf-8"
# Check for a vanished export consumer every N lines
_DISCONNECT_CHECK_EVERY = 200


async def serve_dashboard() -> HTMLResponse:
    """Serve the static dashboard page (mounted at the bare path prefix)."""
    try:
        html = _UI_PATH.read_text(encoding="utf-8")
    except OSError:
        html = "<h1>Missing UI</h1>"
    return HTMLResponse(html, headers=_NO_STORE)


async def live_stream(broadcaster: Broadcaster) -> AsyncIterator[bytes]:
    """Greet, then relay published records until the subscription closes or the client leaves."""
    sub = broadcaster.subscribe()
    try:
        yield encode_comment("connected")
        yield encode_frame({"ok": True}, event="hello")
        while True:
            record = await sub.get()
            if record is None:
                break
            yield encode_frame(record, event=RECORD_EVENT)
    finally:
        broadcaster.unsubscribe(sub)


async def export_stream(ledger: LedgerWriter, since: datetime | None, request: Request) -> AsyncIterator[str]:
    """Relay the ledger line by line off the event loop, stopping once the consumer disconnects."""
    count = 0
    async for line in iterate_in_threadpool(ledger.stream_export(since)):
        if count % _DISCONNECT_CHECK_EVERY == 0 and await request.is_disconnected():
            logger.info("Export consumer disconnected after %d lines", count)
            return
        count += 1
        yield line + "\n"


@router.get("/events")
async def live_events(state: TraceState = Depends(get_trace_state)) -> EventSourceResponse:
    """Push every new ledger record as a ``line`` event until the client goes away."""
    return EventSourceResponse(live_stream(state.broadcaster), ping=int(state.config.heartbeat_seconds))


@router.get("/api/recent")
async def recent_entries(
    response: Response,
    n: int = Query(200, description="Number of most recent lines"),
    state: TraceState = Depends(get_trace_state),
) -> dict:
    """Return the last ``n`` raw ledger lines (1..2000)."""
    response.headers.update(_NO_STORE)
    limit = min(MAX_TAIL_LINES, max(1, n))
    return {"ok": True, "lines": await run_in_threadpool(state.ledger.tail, limit)}


@router.get("/api/export")
async def export_ledger(
    request: Request,
    n: int | None = Query(None, description="Export only the last n lines"),
    sinceTs: str | None = Query(None, description="Only records at or after this ISO timestamp"),
    state: TraceState = Depends(get_trace_state),
) -> StreamingResponse:
    """Download the ledger as JSONL: a bounded tail, or a full (optionally filtered) stream."""
    since: datetime | None = None
    if sinceTs:
        since = parse_timestamp(sinceTs)
        if since is None:
            raise HTTPException(status_code=400, detail="invalid sinceTs")

    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    filename = "tooltrace-" + stamp.replace(":", "-").replace(".", "-") + ".jsonl"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"', **_NO_STORE}

    if n is not None:
        lines = await run_in_threadpool(state.ledger.tail, max(1, n), cap=MAX_EXPORT_LINES)
        return StreamingResponse(iter([line + "\n" for line in lines]), media_type=_NDJSON, headers=headers)

    return StreamingResponse(export_stream(state.ledger, since, request), media_type=_NDJSON, headers=headers)


@router.post("/api/note")
async def submit_note(
    body: NoteSubmission | None = None,
    state: TraceState = Depends(get_trace_state),
) -> dict:
    """Append a free-text note to the ledger and broadcast it."""
    if not state.config.enable_notes:
        raise HTTPException(status_code=403, detail="notes disabled")
    text = str(body.text or "").strip() if body else ""
    if not text:
        raise HTTPException(status_code=400, detail="missing text")
    state.pipeline.submit_note(text, body.sessionKey)
    return {"ok": True}
