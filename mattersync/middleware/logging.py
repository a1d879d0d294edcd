"""
Request Logging Middleware
Logs all HTTP requests and responses with timing information
"""
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Polled by uptime checks; not worth a line each
QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.
    Logs every HTTP request with method, path, status code, and duration.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO

        logger.log(
            level,
            f"{request.method} {request.url.path} - {response.status_code} ({duration_ms:.2f}ms)",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_host": request.client.host if request.client else None
            }
        )

        return response
