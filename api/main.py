"""
FastAPI application for the oddsedge API.

Main entry point for the HTTP API that exposes:
- Ranked arbitrage and EV opportunities (REST)
- The live opportunity stream (SSE)
- Plan lookup for the signed-in caller
- Push ingestion of sportsbook quotes
- Health checks and scheduler job control

Run with:
    uvicorn api.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger as loguru_logger

from api.routers import arbs, ev, health, ingest, jobs, me, sse
from api.state import AppState
from oddsedge.accounts.sessions import SessionExpiredError
from oddsedge.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Route stdlib and loguru output to the configured level and file."""
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level=level)
    if settings.log_file:
        loguru_logger.add(
            settings.log_file,
            level=level,
            rotation="10 MB",
            retention="7 days",
        )


def create_app(settings: Optional[Settings] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        start_scheduler: Start the tick and polling jobs on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes components on startup and cleans up on shutdown.
        """
        logger.info("Starting oddsedge API...")

        state = AppState(settings=settings, start_scheduler=start_scheduler)
        await state.initialize()
        app.state.app_state = state

        logger.info("oddsedge API started")

        yield

        logger.info("Shutting down oddsedge API...")
        await state.shutdown()
        logger.info("oddsedge API shutdown complete")

    cors_origins = (settings or get_settings()).cors_origins

    app = FastAPI(
        title="oddsedge API",
        description="Real-time arbitrage and positive-EV opportunity detection",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionExpiredError)
    async def session_expired_handler(request: Request, exc: SessionExpiredError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": "auth_expired"})

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(arbs.router, prefix="/api", tags=["Arbitrage"])
    app.include_router(ev.router, prefix="/api", tags=["EV"])
    app.include_router(sse.router, prefix="/api", tags=["Stream"])
    app.include_router(me.router, prefix="/api", tags=["Account"])
    app.include_router(ingest.router, prefix="/api", tags=["Ingest"])
    app.include_router(jobs.router, prefix="/api", tags=["Jobs"])

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint points to API documentation."""
        return {
            "name": "oddsedge API",
            "version": "0.1.0",
            "docs": "/api/docs",
            "health": "/api/health",
        }

    return app


configure_logging(get_settings())
app = create_app()
