"""Custom exception classes for the application.

Every error a handler can raise is an ``HTTPException`` subclass; the
handlers registered by :func:`register_exception_handlers` render them as
``{"error": "<detail>"}`` bodies, plus any ``extra`` fields.
"""

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger()


class AppError(HTTPException):
    """Base for errors carrying additional JSON fields in the response body."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        extra: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.extra = extra or {}


class ValidationError(AppError):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class UnauthenticatedError(AppError):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(AppError):
    # Same message for "not yours" and "does not exist"
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class RateLimitExceededError(AppError):
    def __init__(self, retry_after: int = 60):
        super().__init__(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )


class PersistenceError(AppError):
    def __init__(self, detail: str = "Database error"):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, detail)


class CompletionServiceError(AppError):
    """The completion service failed or reported an error.

    ``status_code`` is the upstream status when one was received, 500
    otherwise. The body always carries ``service_unavailable: true`` so a
    client can offer a retry.
    """

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: str = "Backend service error",
        detail: str = "LLM service unavailable",
    ):
        if status_code < 400:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        super().__init__(
            status_code,
            detail,
            extra={"details": details, "service_unavailable": True},
        )
        self.details = details


def _error_response(exc: StarletteHTTPException) -> JSONResponse:
    body = {"error": exc.detail}
    body.update(getattr(exc, "extra", {}))
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            path=request.url.path,
            status=exc.status_code,
            error=exc.detail,
            details=getattr(exc, "extra", {}).get("details"),
        )
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", message)
    return JSONResponse({"error": message}, status_code=status.HTTP_400_BAD_REQUEST)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        {"error": "Internal server error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
