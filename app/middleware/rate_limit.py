"""Global per-IP throttling and rate-limit bypass detection."""
import hmac
import logging

from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.constants import UserRole
from app.middleware.error_handler import error_response
from app.services.rate_limiter import CounterRateLimiter
from app.utils.errors import RateLimitError, ServiceUnavailableError
from app.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

BYPASS_HEADER = "X-RateLimit-Bypass"
EXEMPT_PATHS = ("/health", "/docs", "/openapi.json")


def is_bypassed(request: Request) -> bool:
    """Operator bypass token or an admin access token skips every limiter."""
    presented = request.headers.get(BYPASS_HEADER)
    if settings.RATE_LIMIT_BYPASS_TOKEN and presented:
        if hmac.compare_digest(presented, settings.RATE_LIMIT_BYPASS_TOKEN):
            return True

    auth = getattr(request.state, "auth", None)
    return bool(auth and auth.get("role") == UserRole.ADMIN.value)


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        bypass = is_bypassed(request)
        request.state.rate_limit_bypass = bypass

        if bypass or not settings.RATE_LIMIT_ENABLED or request.url.path.startswith(EXEMPT_PATHS):
            return await call_next(request)

        limiter = CounterRateLimiter(request.app.state.cache)
        try:
            result = await limiter.check(
                "global",
                get_client_ip(request),
                settings.RATE_LIMIT_REQUESTS,
                settings.RATE_LIMIT_PERIOD_SECONDS,
            )
        except ServiceUnavailableError as exc:
            return error_response(request, exc.status_code, exc.code, exc.message)

        if not result.allowed:
            logger.warning("Global rate limit hit by %s on %s", get_client_ip(request), request.url.path)
            exc = RateLimitError(retry_after=result.retry_after)
            return error_response(
                request,
                exc.status_code,
                exc.code,
                exc.message,
                retry_after=exc.retry_after,
                headers={**result.headers(), **exc.headers},
            )

        response = await call_next(request)
        for name, value in result.headers().items():
            response.headers.setdefault(name, value)
        return response
