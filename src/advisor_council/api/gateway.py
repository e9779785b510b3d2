"""
API Gateway -- FastAPI application factory.

Creates the FastAPI app around one SessionStateMachine. Entrypoint for uvicorn:

    uvicorn advisor_council.api.gateway:create_app --factory --host 0.0.0.0 --port 8000

Or for development:

    uvicorn advisor_council.api.gateway:create_app --factory --reload

The lifespan starts the backend health probe and the idle-session sweeper and
stops both on shutdown.
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import CouncilConfig, load_config
from ..orchestration.state_machine import SessionStateMachine, create_state_machine
from .routes import health, sessions

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://localhost:8080",
]


def _get_cors_origins() -> list[str]:
    """Load CORS origins from environment or use safe defaults."""
    origins_env = os.environ.get("CORS_ORIGINS", "")
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def create_app(
    machine: SessionStateMachine | None = None,
    config: CouncilConfig | None = None,
    background_tasks: bool = True,
) -> FastAPI:
    """
    Application factory -- creates and configures the FastAPI app.

    Args:
        machine: Pre-built state machine (builds the default one if None).
        config: Engine configuration (loaded from the environment if None).
        background_tasks: Start health probes and session eviction in the lifespan.
    """
    config = config or load_config()
    if machine is None:
        machine = create_state_machine(config=config)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        if background_tasks:
            machine.generator.start_health_checks(config.health_interval)
            machine.start_eviction_loop(config.eviction_interval)
        logger.info("[Gateway] Session engine started")
        try:
            yield
        finally:
            if background_tasks:
                await machine.generator.stop_health_checks()
            await machine.aclose()
            logger.info("[Gateway] Session engine stopped")

    application = FastAPI(
        title="Advisor Council API",
        description="Multi-phase expert advisory sessions",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.state.machine = machine
    application.state.config = config
    application.state.start_time = time.time()

    application.include_router(health.router, tags=["Health"])
    application.include_router(sessions.router, prefix="/api/v1", tags=["Sessions"])

    logger.info("[Gateway] API gateway initialized")
    return application
