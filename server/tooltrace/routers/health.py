"""Health check endpoint (always mounted, even when tracing is disabled)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .. import __version__
from ..app_state import TraceState
from ..deps import get_trace_state

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(state: TraceState = Depends(get_trace_state)) -> dict:
    """Report gateway status, ledger location and live observer count."""
    snapshot = state.resolver.snapshot
    return {
        "status": "ok" if state.config.enabled else "disabled",
        "enabled": state.config.enabled,
        "version": __version__,
        "ledgerPath": str(state.ledger.path),
        "subscribers": len(state.broadcaster),
        "identity": {
            "sessions": len(snapshot.sessions),
            "labels": len(snapshot.meta),
            "cronJobs": len(snapshot.cron_names),
        },
    }
