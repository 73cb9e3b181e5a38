"""Maps exceptions escaping the routes onto structured JSON error bodies."""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from .correlation import get_correlation_id
from ..adapters.base import StoreError
from ..ingest.validator import RejectReason

log = structlog.get_logger()


def error_body(request: Request, error: str, message: str, **extra) -> dict:
    return {
        "error": error,
        "message": message,
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        **extra,
    }


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Last line of error handling for the HTTP surface.

    Batch ingestion absorbs store faults per event, so a StoreError only
    escapes from read paths (stats). Those are reported as 503 so callers
    know to retry; anything else is a 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except StoreError as exc:
            log.warning(
                "store.unavailable",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=503,
                content=error_body(
                    request,
                    "StoreUnavailable",
                    "The record store is unavailable, retry later",
                    reason=RejectReason.STORE_UNAVAILABLE.value,
                ),
                headers={"Retry-After": "1"},
            )
        except Exception as exc:
            log.error(
                "unhandled.exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content=error_body(request, "InternalServerError", "An unexpected error occurred"),
            )
