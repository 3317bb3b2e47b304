"""VoiceDev - FastAPI Application Entry Point.

Voice and text front end for a coding agent: one live session, streamed
to any number of browser observers over /ws.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voicedev import __version__
from voicedev.agent import create_agent_session
from voicedev.api.routes import health, session
from voicedev.api.websocket import router as websocket_router
from voicedev.config.settings import get_settings
from voicedev.observability.logging import get_logger, init_logging
from voicedev.observability.metrics import set_build_info
from voicedev.orchestrator.orchestrator import OrchestratorConfig, SessionOrchestrator
from voicedev.voice import create_voice_session

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds the session orchestrator and its collaborators on startup and
    tears them down on shutdown.
    """
    settings = get_settings()
    init_logging(json_format=settings.environment == "production", level=settings.log_level)
    logger.info(
        "voicedev_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
        agent_engine=settings.agent_engine,
        voice_engine=settings.voice_engine,
    )
    set_build_info(__version__, settings.agent_engine, settings.voice_engine)

    try:
        agent = await create_agent_session()
        voice = create_voice_session()
        orchestrator = SessionOrchestrator(
            agent,
            voice,
            OrchestratorConfig.from_settings(settings),
        )
        await orchestrator.start()
    except Exception as e:
        logger.error("voicedev_startup_failed", error=str(e))
        raise

    app.state.orchestrator = orchestrator
    logger.info(
        "voicedev_ready",
        session_id=orchestrator.session_id,
        voice_connected=orchestrator.voice_connected,
        working_dir=settings.working_dir,
    )

    yield  # Application runs here

    logger.info("voicedev_shutting_down")
    await orchestrator.stop()
    await agent.stop()
    app.state.orchestrator = None
    logger.info("voicedev_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="VoiceDev",
        description="Voice-driven development assistant session service",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(session.router)
    app.include_router(websocket_router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    log_level = "warning" if settings.log_level == "WARN" else settings.log_level.lower()

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    uvicorn.run(
        "voicedev.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=log_level,
        reload=settings.environment == "development",
    )
