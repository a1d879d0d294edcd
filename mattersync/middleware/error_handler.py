"""
Global Error Handler Middleware
Catches all unhandled exceptions and returns structured error responses
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mattersync.services.sync.errors import MatterSyncError, SyncAlreadyRunningError

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.
    Maps sync engine errors to HTTP statuses; anything else becomes a 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except SyncAlreadyRunningError as exc:
            logger.info(f"{request.method} {request.url.path}: {exc}")
            return JSONResponse(
                status_code=409,
                content={
                    "detail": str(exc),
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
        except MatterSyncError as exc:
            logger.error(f"Sync error during request: {exc}", exc_info=True)
            return JSONResponse(
                status_code=502,
                content={
                    "detail": str(exc),
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
        except Exception as exc:
            logger.error(
                "Unhandled exception during request",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "client_host": request.client.host if request.client else None
                }
            )

            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal server error",
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
