"""Main application entrypoint for the chunkup upload service."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chunkup.api.middleware import HTTPErrorLoggingMiddleware
from chunkup.api.v1 import routes_auth, routes_health, routes_upload
from chunkup.core.config import settings
from chunkup.core.exceptions import (
    AuthorizationError,
    BackendError,
    ChunkUploadException,
    ConfigurationError,
    DecompressionError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from chunkup.core.logging import setup_logging
from chunkup.services.orchestrator import SessionOrchestrator
from chunkup.storage.base import MultipartBackend
from chunkup.storage.factory import get_storage_backend
from chunkup.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

# Most specific classes first
ERROR_STATUS_CODES: list[tuple[type[ChunkUploadException], int]] = [
    (SessionNotFoundError, 404),
    (SessionStateError, 409),
    (DecompressionError, 422),
    (ValidationError, 400),
    (AuthorizationError, 401),
    (ConfigurationError, 503),
    (BackendError, 502),
]


def status_code_for(exc: ChunkUploadException) -> int:
    for exc_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def upload_exception_handler(request: Request, exc: ChunkUploadException) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(
            f"Upload operation failed: {exc}",
            extra={"path": request.url.path, **exc.details},
            exc_info=exc,
        )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors(), custom_encoder={bytes: lambda b: f"<{len(b)} bytes>"})
    first = errors[0] if errors else {}
    field = str(first.get("loc", ["", ""])[-1]) if first else None
    return JSONResponse(
        status_code=400,
        content={
            "error": ValidationError.code,
            "detail": first.get("msg", "Invalid request"),
            "field": field,
            "errors": errors,
        },
    )


async def _sweep_sessions_periodically(orchestrator: SessionOrchestrator, interval: int) -> None:
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await orchestrator.sweep_expired()
            if removed:
                logger.info("Expired upload sessions swept", extra={"removed": removed})
        except asyncio.CancelledError:
            logger.info("Session sweeper cancelled")
            break
        except Exception as e:
            logger.error(f"Error in session sweeper: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(
        _sweep_sessions_periodically(app.state.orchestrator, settings.SESSION_SWEEP_INTERVAL_SECONDS)
    )
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass


def create_app(backend: MultipartBackend | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        backend: Storage backend to serve; defaults to the one selected by
            ``STORAGE_BACKEND``

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.orchestrator = SessionOrchestrator(
        backend=backend or get_storage_backend(),
        store=SessionStore(ttl=timedelta(seconds=settings.SESSION_TTL_SECONDS)),
    )

    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_exception_handler(ChunkUploadException, upload_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_auth.router)
    app.include_router(routes_upload.router)

    return app


# Export app instance for ASGI servers
app = create_app()
