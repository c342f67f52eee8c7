"""FastAPI dependencies for per-app state resolution."""

from __future__ import annotations

from fastapi import Request

from .app_state import TraceState


async def get_trace_state(request: Request) -> TraceState:
    """Return the TraceState the app was created with."""
    return request.app.state.trace
