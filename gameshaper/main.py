"""
Main entry point for the gameshaper service.

Creates the FastAPI application instance for uvicorn:

    uvicorn gameshaper.main:app --port 8090
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gameshaper import __version__
from gameshaper.api.error_handlers import register_error_handlers
from gameshaper.api.routes import (
    chat_router,
    edits_router,
    entities_router,
    feedback_router,
    health_router,
    ledger_router,
    pipelines_router,
)
from gameshaper.api.routes.health import set_service_start_time
from gameshaper.core.config import get_settings
from gameshaper.core.exceptions import SnapshotError
from gameshaper.core.logging import configure_logging, get_logger
from gameshaper.session import GameShaperSession


# Configure structured logging on module load
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    On startup: build the session (unless a test bound one), restore the
    last snapshot and start the feedback worker.
    On shutdown: persist the session and close its clients.
    """
    settings = get_settings()
    logger.info("Starting gameshaper service", port=settings.port, environment=settings.environment)
    set_service_start_time()

    session: GameShaperSession | None = getattr(app.state, "session", None)
    if session is None:
        session = GameShaperSession.from_settings(settings)
        try:
            restored = await session.restore()
            logger.info("Session snapshot restored" if restored else "No session snapshot found")
        except SnapshotError as e:
            logger.error("Session restore failed, starting empty", error=e.message)
        app.state.session = session

    await session.start()

    yield

    logger.info("Shutting down gameshaper service")
    try:
        await session.persist()
    except SnapshotError as e:
        logger.warning("Session not persisted", error=e.message)
    await session.aclose()


def create_app(session: GameShaperSession | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        session: Pre-built session; the lifespan builds one from settings when None
    """
    app = FastAPI(
        title="GameShaper Service",
        description="LLM-assisted co-authoring of graph-structured game worlds",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if session is not None:
        app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(edits_router)
    app.include_router(chat_router)
    app.include_router(pipelines_router)
    app.include_router(entities_router)
    app.include_router(ledger_router)
    app.include_router(feedback_router)
    app.include_router(health_router)

    return app


# Create application instance
app = create_app()
