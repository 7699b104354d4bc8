"""Correlation id propagation and the top-level error boundary.

Registered last so it wraps every other middleware: whatever escapes the
routers and the inner middleware is turned into the 500 envelope here.
"""
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.logger import correlation_id_var
from app.middleware.error_handler import unhandled_exception_response

HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        correlation_id = (request.headers.get(HEADER) or "")[:128] or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                response = unhandled_exception_response(request, exc)
            response.headers[HEADER] = correlation_id
            return response
        finally:
            correlation_id_var.reset(token)
