"""Session API Routes - Inspect and control the live session.

Provides REST endpoints for:
- Current state, context and voice connection
- Progress log of the running agent task
- Cancel (same effect as a client cancel message)
"""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from voicedev.api.dependencies import get_orchestrator
from voicedev.orchestrator.orchestrator import SessionOrchestrator

router = APIRouter(prefix="/session", tags=["session"])


# Request/Response models
class SessionStatusResponse(BaseModel):
    """Point-in-time session status."""

    session_id: str
    state: str
    context: dict[str, Any] = Field(default_factory=dict)
    running: bool
    voice_connected: bool
    observers: int
    active_call_id: str | None = None
    task_id: int | None = None
    latest_progress: str = ""
    progress_count: int = 0


class ProgressEntry(BaseModel):
    """One agent progress event."""

    message: str
    kind: str
    tool_label: str | None = None
    at: float


class CancelResponse(BaseModel):
    """Response to a cancel request."""

    status: str = Field(..., description="cancel_requested")
    session_id: str


@router.get("", response_model=SessionStatusResponse)
async def get_session(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SessionStatusResponse:
    """Get current session status."""
    return SessionStatusResponse(**orchestrator.snapshot().to_dict())


@router.get("/progress", response_model=list[ProgressEntry])
async def get_progress(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> list[ProgressEntry]:
    """Progress log of the current (or last) agent task."""
    return [ProgressEntry(**event.to_dict()) for event in orchestrator.progress_log()]


@router.post("/cancel", response_model=CancelResponse, status_code=status.HTTP_202_ACCEPTED)
async def cancel_session(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> CancelResponse:
    """Cancel the current turn.

    The cancel is queued behind events already in the inbox; the session
    is idle once it has been handled.
    """
    await orchestrator.cancel()
    return CancelResponse(status="cancel_requested", session_id=orchestrator.session_id)
