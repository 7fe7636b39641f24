"""Health check endpoint for the chunkup upload service."""

from fastapi import APIRouter, Request

from chunkup.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns service status, name, version and the active storage backend.
    No backend call is made so the check stays fast.
    """
    backend = request.app.state.orchestrator.backend
    return {
        "status": "ok" if backend.is_configured() else "degraded",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "storage_backend": backend.get_backend_name(),
    }
