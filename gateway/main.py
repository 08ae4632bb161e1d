"""
gateway/main.py

FastAPI application entry point for the Gateway service.
Configures structlog, owns the engine lifecycle and registers routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from config import settings
from engine.monitor import GuardianEngine, build_engine
from gateway.constants import GATEWAY_PORT
from gateway.routers.emergency import router as emergency_router
from gateway.routers.incidents import router as incidents_router
from gateway.routers.readings import router as readings_router
from gateway.routers.thresholds import router as thresholds_router

logger = structlog.get_logger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


def create_app(
    engine: Optional[GuardianEngine] = None,
    start_engine: bool = True,
) -> FastAPI:
    """Build the app around an engine; the engine's loops follow the app lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application lifecycle: startup and shutdown."""
        logger.info("gateway_starting", port=GATEWAY_PORT)
        if start_engine:
            await app.state.engine.start()
        yield
        logger.info("gateway_shutting_down")
        if start_engine:
            await app.state.engine.stop()

    app = FastAPI(
        title="Safety Guardian Gateway",
        description="Threat assessment and escalation service",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine or build_engine()

    app.include_router(readings_router)
    app.include_router(incidents_router)
    app.include_router(emergency_router)
    app.include_router(thresholds_router)
    return app


configure_logging()
app = create_app()
