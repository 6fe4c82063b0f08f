"""Application middleware: per-request log context and access logging."""

import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()


def client_key(request: Request) -> str:
    """Network identity of the caller, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind the caller to the log context, then log the finished request."""

    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            client=client_key(request),
            method=request.method,
            path=request.url.path,
        )
        started = time.perf_counter()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as e:
            logger.error("request_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            logger.info(
                "request_completed",
                status=status,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
