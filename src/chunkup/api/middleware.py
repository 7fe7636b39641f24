"""Middleware for HTTP error logging."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to ensure all HTTP errors are logged.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        log_extra = {
            "http_status": response.status_code,
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
            "duration_ms": round(duration_ms, 2),
        }

        if 400 <= response.status_code < 500:
            logger.warning("Client error response", extra=log_extra)
        elif response.status_code >= 500:
            logger.error("Server error response", extra=log_extra)

        return response
