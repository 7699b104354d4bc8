"""Global error handlers for the application.

All of them render the same envelope::

    {"success": false, "error": {"code", "message", "correlationId", "retryAfter"?, "details"?}}
"""
import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.logger import correlation_id_var
from app.schemas.common import ErrorDetail, ErrorResponse
from app.utils.errors import APIError, InternalServerError
from app.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
}


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or correlation_id_var.get()


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[list[dict[str, Any]]] = None,
    retry_after: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    correlation_id = _correlation_id(request)
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            correlation_id=correlation_id,
            retry_after=retry_after,
            details=details,
        )
    )
    headers = {**(headers or {}), "X-Correlation-ID": correlation_id}
    return JSONResponse(status_code=status_code, content=body.to_content(), headers=headers)


async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    elif exc.status_code in (401, 403, 429):
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return error_response(
        request,
        exc.status_code,
        exc.code,
        exc.message,
        details=exc.details,
        retry_after=exc.retry_after,
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(
        request,
        exc.status_code,
        _STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
        message,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Validation failed",
        details=details,
    )


def unhandled_exception_response(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500. Full context goes to the log, never to the client outside development."""
    auth = getattr(request.state, "auth", None) or {}
    logger.error(
        "Unhandled error on %s %s (ip=%s user=%s correlation_id=%s)",
        request.method,
        request.url.path,
        get_client_ip(request),
        auth.get("sub", "-"),
        _correlation_id(request),
        exc_info=exc,
    )
    error = InternalServerError()
    details = None
    if settings.is_development:
        details = [{"exception": type(exc).__name__, "message": str(exc)}]
    return error_response(request, error.status_code, error.code, error.message, details=details)
