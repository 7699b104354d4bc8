"""Rate-limit dependencies for the auth endpoints.

IP- and user-keyed limits are plain dependencies. Limits keyed by an email
from the request body run inside the handler through ``enforce_attempt_limit``
once the body has been validated.
"""
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import AttemptAction
from app.core.database import get_db
from app.models.user import User
from app.services.rate_limiter import AttemptRateLimiter, BruteForceGuard, CounterRateLimiter, RateLimitResult
from app.utils.errors import RateLimitError
from app.utils.helpers import get_client_ip

REGISTER_LIMIT = AttemptRateLimiter(AttemptAction.REGISTER, max_attempts=3, window_seconds=3600)
LOGIN_LIMIT = AttemptRateLimiter(AttemptAction.LOGIN, max_attempts=5, window_seconds=600, skip_successful=True)
PASSWORD_RESET_LIMIT = AttemptRateLimiter(
    AttemptAction.PASSWORD_RESET,
    max_attempts=3,
    window_seconds=3600,
    key_by=AttemptRateLimiter.KEY_EMAIL_OR_IP,
)
OTP_REQUEST_LIMIT = AttemptRateLimiter(
    AttemptAction.OTP_REQUEST,
    max_attempts=3,
    window_seconds=300,
    key_by=AttemptRateLimiter.KEY_EMAIL,
)
OTP_VERIFY_LIMIT = AttemptRateLimiter(AttemptAction.OTP_VERIFY, max_attempts=5, window_seconds=900, skip_successful=True)
BRUTE_FORCE_GUARD = BruteForceGuard()

USER_REQUESTS_PER_MINUTE = 60

_MESSAGES = {
    AttemptAction.REGISTER: "Too many registration attempts, please try again later",
    AttemptAction.LOGIN: "Too many login attempts, please try again in 10 minutes",
    AttemptAction.PASSWORD_RESET: "Too many password reset requests, please try again later",
    AttemptAction.OTP_REQUEST: "Too many OTP requests, please try again in a few minutes",
    AttemptAction.OTP_VERIFY: "Too many OTP attempts, please try again later",
}


def _skip(request: Request) -> bool:
    return not settings.RATE_LIMIT_ENABLED or getattr(request.state, "rate_limit_bypass", False)


def _apply(result: RateLimitResult, response: Response, message: Optional[str] = None) -> None:
    if not result.allowed:
        raise RateLimitError(message, retry_after=result.retry_after, headers=result.headers())
    for name, value in result.headers().items():
        response.headers[name] = value


def enforce_attempt_limit(
    limiter: AttemptRateLimiter,
    request: Request,
    response: Response,
    db: Session,
    email: Optional[str] = None,
) -> None:
    if _skip(request):
        return
    result = limiter.check(db, ip_address=get_client_ip(request), email=email.lower() if email else None)
    _apply(result, response, _MESSAGES.get(limiter.action))


def enforce_brute_force_guard(request: Request, db: Session, email: str) -> None:
    if _skip(request):
        return
    BRUTE_FORCE_GUARD.check(db, email)


def attempt_limit(limiter: AttemptRateLimiter):
    """Dependency factory for IP-keyed durable limits."""

    async def dependency(request: Request, response: Response, db: Session = Depends(get_db)) -> None:
        enforce_attempt_limit(limiter, request, response, db)

    return dependency


def user_attempt_limit(limiter: AttemptRateLimiter, current_user_dependency):
    """Dependency factory for durable limits keyed by the authenticated user's email."""

    async def dependency(
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
        current_user: User = Depends(current_user_dependency),
    ) -> User:
        enforce_attempt_limit(limiter, request, response, db, email=current_user.email)
        return current_user

    return dependency


def user_rate_limit(endpoint_class: str, max_requests: int = USER_REQUESTS_PER_MINUTE, window_seconds: int = 60):
    """Counter-based limit per user (or IP when anonymous) and endpoint class."""

    async def dependency(request: Request, response: Response) -> None:
        if _skip(request):
            return
        auth = getattr(request.state, "auth", None)
        key = f"user:{auth['sub']}" if auth else f"ip:{get_client_ip(request)}"
        limiter = CounterRateLimiter(request.app.state.cache)
        result = await limiter.check(endpoint_class, key, max_requests, window_seconds)
        _apply(result, response)

    return dependency
