"""FastAPI dependencies shared by the HTTP and WebSocket routes."""

from fastapi import HTTPException, Request, status
from starlette.requests import HTTPConnection

from voicedev.orchestrator.orchestrator import SessionOrchestrator


def find_orchestrator(connection: HTTPConnection) -> SessionOrchestrator | None:
    """Orchestrator created by the application lifespan, if any."""
    return getattr(connection.app.state, "orchestrator", None)


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Dependency: the running session orchestrator.

    Raises:
        HTTPException: 503 until the lifespan has started the session
    """
    orchestrator = find_orchestrator(request)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session not initialized",
        )
    return orchestrator
