"""Health check endpoints.

- /healthz: Liveness probe (is the process alive?)
- /readyz: Readiness probe (is the session loop running?)
- /health: Combined status with session state and voice connection
- /metrics: Prometheus metrics endpoint
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from voicedev.api.dependencies import find_orchestrator
from voicedev.config.settings import get_settings

router = APIRouter(tags=["health"])


def _components(request: Request) -> dict[str, bool]:
    orchestrator = find_orchestrator(request)
    return {
        "orchestrator": orchestrator is not None and orchestrator.is_running,
        "voice": orchestrator is not None and orchestrator.voice_connected,
    }


@router.get("/healthz", response_model=dict[str, str])
async def healthz() -> dict[str, str]:
    """Liveness probe.

    Returns 200 if the process is alive.
    """
    return {"status": "alive"}


@router.get("/readyz")
async def readyz(request: Request, response: Response) -> dict[str, Any]:
    """Readiness probe.

    Returns 503 until the orchestrator loop is running. Voice is not
    critical: text input keeps working without it.
    """
    components = _components(request)

    if components["orchestrator"]:
        return {"status": "ready", "components": components}

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "not_ready", "components": components}


@router.get("/health")
async def health(request: Request, response: Response) -> dict[str, Any]:
    """Combined health endpoint.

    Provides readiness plus the current session state.
    """
    orchestrator = find_orchestrator(request)
    if orchestrator is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "degraded",
            "ready": False,
            "state": None,
            "voice_connected": False,
            "observers": 0,
        }

    snapshot = orchestrator.snapshot()
    if not snapshot.running:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if snapshot.running else "degraded",
        "ready": snapshot.running,
        "state": snapshot.state.value,
        "voice_connected": snapshot.voice_connected,
        "observers": snapshot.observers,
    }


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition."""
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
