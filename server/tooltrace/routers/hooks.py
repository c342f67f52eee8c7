"""Hook ingestion for hosts that run out of process (see tooltrace.forwarder)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..app_state import TraceState
from ..deps import get_trace_state
from ..models.hooks import HookEnvelope

router = APIRouter(tags=["hooks"])


@router.post("/api/hooks/{hook_name}")
async def ingest_hook(
    hook_name: str,
    body: HookEnvelope,
    state: TraceState = Depends(get_trace_state),
) -> dict:
    """Feed one lifecycle hook into the pipeline."""
    pipeline = state.pipeline
    if hook_name not in pipeline.handlers:
        raise HTTPException(status_code=404, detail=f"unknown hook: {hook_name}")
    record = pipeline.dispatch(hook_name, body.event, body.ctx)
    return {"ok": True, "recorded": record is not None}
