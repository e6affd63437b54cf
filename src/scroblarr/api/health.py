"""Health check endpoints for Kubernetes/Docker."""

from fastapi import APIRouter, Request, Response

from ..sync import SyncEngine

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> Response:
    """Liveness probe: 200 while the process is up."""
    return Response(content="ok", media_type="text/plain")


@router.get("/readyz")
async def readyz(request: Request) -> Response:
    """
    Readiness probe.

    Ready once the sync engine exists and at least one worker is running.
    """
    engine: SyncEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        return Response(content="engine not initialized", status_code=503, media_type="text/plain")

    if not engine.running:
        return Response(content="no worker running", status_code=503, media_type="text/plain")

    return Response(content="ok", media_type="text/plain")
