"""FastAPI application for the tooltrace gateway."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .app_state import TraceState
from .config import TraceConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start identity refresh timers on startup; cancel them and end live streams on shutdown."""
    state: TraceState = app.state.trace
    await state.start()

    yield

    await state.stop()
    logger.info("tooltrace gateway stopped")


def create_app(config: TraceConfig | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    config = config or TraceConfig()
    logging.basicConfig(level=config.log_level, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    app = FastAPI(
        title="tooltrace",
        description="Redacted audit ledger and live stream for agent tool calls",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.trace = TraceState(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .routers.health import router as health_router

    app.include_router(health_router)

    if config.enabled:
        from .routers.hooks import router as hooks_router
        from .routers.ledger import router as ledger_router
        from .routers.ledger import serve_dashboard

        prefix = config.path_prefix
        app.add_api_route(prefix or "/", serve_dashboard, methods=["GET"], include_in_schema=False)
        app.include_router(ledger_router, prefix=prefix)
        app.include_router(hooks_router, prefix=prefix)

    return app
