"""Lightweight JWT inspection middleware.

Decodes a bearer access token, when one is present and valid, and attaches
the payload to `request.state.auth` so that the rate limiter and the error
boundary know who is calling. It never rejects a request: route-level
dependencies (`get_current_user`) enforce authentication.
"""
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware
from app.core.security import decode_access_token
from app.utils.errors import InvalidTokenError


class JWTMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.auth = None

        auth_header = request.headers.get("authorization")
        if auth_header:
            scheme, _, token = auth_header.partition(" ")
            if scheme.lower() == "bearer" and token:
                try:
                    request.state.auth = decode_access_token(token)
                except InvalidTokenError:
                    request.state.auth = None

        return await call_next(request)
