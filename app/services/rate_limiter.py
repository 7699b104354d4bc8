"""Rate limiting for the auth core.

Two limiters coexist:

* ``AttemptRateLimiter`` counts rows in ``login_attempts``. It is slower but
  exact and auditable, and it backs every auth-specific quota (login,
  registration, password reset, OTP).
* ``CounterRateLimiter`` keeps fixed-window counters in Redis for coarse API
  throttling. When Redis cannot be reached it follows
  ``RATE_LIMIT_FAIL_OPEN``.

``BruteForceGuard`` sits on top of the attempt log and locks an email after
too many failed logins, whatever IP they came from.
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.cache.cache_service import RedisCache
from app.core.config import settings
from app.core.constants import AttemptAction, BRUTE_FORCE_MAX_FAILURES, BRUTE_FORCE_WINDOW_SECONDS
from app.models.base import utcnow
from app.models.login_attempt import LoginAttempt
from app.utils.errors import AccountLockedError, ServiceUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: int  # epoch seconds when the current window ends
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_time),
        }


def _unlimited(limit: int, window_seconds: int) -> RateLimitResult:
    return RateLimitResult(
        allowed=True,
        limit=limit,
        remaining=limit,
        reset_time=int(time.time()) + window_seconds,
    )


def _store_unavailable(limiter: str, key: str, limit: int, window_seconds: int, exc: Exception) -> RateLimitResult:
    if not settings.RATE_LIMIT_FAIL_OPEN:
        logger.error("%s limiter unavailable for %s, failing closed: %s", limiter, key, exc)
        raise ServiceUnavailableError("Rate limiter unavailable, please try again shortly")
    logger.warning("%s limiter unavailable for %s, failing open: %s", limiter, key, exc)
    return _unlimited(limit, window_seconds)


class AttemptRateLimiter:
    """Sliding-window limiter over the attempt log."""

    KEY_IP = "ip"
    KEY_EMAIL = "email"
    KEY_EMAIL_OR_IP = "email_or_ip"

    def __init__(
        self,
        action: AttemptAction,
        max_attempts: int,
        window_seconds: int,
        key_by: str = KEY_IP,
        skip_successful: bool = False,
    ):
        self.action = action
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.key_by = key_by
        self.skip_successful = skip_successful

    def _key_filter(self, ip_address: Optional[str], email: Optional[str]):
        if self.key_by == self.KEY_EMAIL:
            return LoginAttempt.email == email
        if self.key_by == self.KEY_EMAIL_OR_IP and email:
            return or_(LoginAttempt.email == email, LoginAttempt.ip_address == ip_address)
        return LoginAttempt.ip_address == ip_address

    def check(self, db: Session, ip_address: Optional[str] = None, email: Optional[str] = None) -> RateLimitResult:
        now = utcnow()
        window_start = now - timedelta(seconds=self.window_seconds)
        key = email if self.key_by == self.KEY_EMAIL else (email or ip_address)

        try:
            query = db.query(func.count(LoginAttempt.id), func.min(LoginAttempt.created_at)).filter(
                LoginAttempt.action == self.action.value,
                self._key_filter(ip_address, email),
                LoginAttempt.created_at >= window_start,
            )
            if self.skip_successful:
                query = query.filter(LoginAttempt.success.is_(False))
            count, oldest = query.one()
        except SQLAlchemyError as e:
            db.rollback()
            return _store_unavailable("attempt", f"{self.action.value}:{key}", self.max_attempts, self.window_seconds, e)

        reset_at = (oldest or now) + timedelta(seconds=self.window_seconds)
        reset_time = int(time.time() + (reset_at - now).total_seconds())
        if count >= self.max_attempts:
            retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
            return RateLimitResult(False, self.max_attempts, 0, reset_time, retry_after)

        # The current request will add one more row.
        remaining = max(0, self.max_attempts - count - 1)
        return RateLimitResult(True, self.max_attempts, remaining, reset_time)


def record_attempt(
    db: Session,
    action: AttemptAction,
    success: bool,
    ip_address: Optional[str] = None,
    email: Optional[str] = None,
    user_id: Optional[int] = None,
    user_agent: Optional[str] = None,
    failure_reason: Optional[str] = None,
    commit: bool = True,
) -> LoginAttempt:
    attempt = LoginAttempt(
        action=action.value,
        ip_address=ip_address,
        email=email.lower() if email else None,
        user_id=user_id,
        user_agent=user_agent,
        success=success,
        failure_reason=failure_reason,
    )
    db.add(attempt)
    if commit:
        db.commit()
    return attempt


class BruteForceGuard:
    """Email-keyed circuit breaker for failed logins."""

    def __init__(self, max_failures: int = BRUTE_FORCE_MAX_FAILURES, window_seconds: int = BRUTE_FORCE_WINDOW_SECONDS):
        self.limiter = AttemptRateLimiter(
            AttemptAction.LOGIN,
            max_attempts=max_failures,
            window_seconds=window_seconds,
            key_by=AttemptRateLimiter.KEY_EMAIL,
            skip_successful=True,
        )

    def check(self, db: Session, email: str) -> None:
        result = self.limiter.check(db, email=email.lower())
        if not result.allowed:
            logger.warning("Account temporarily locked after repeated failures: %s", email)
            # Fixed lockout regardless of how old the oldest failure is.
            raise AccountLockedError(retry_after=self.limiter.window_seconds)


class CounterRateLimiter:
    """Fixed-window counter in Redis keyed ``rate_limit:{tier}:{key}:{window}``."""

    def __init__(self, cache: RedisCache):
        self.cache = cache

    async def check(self, tier: str, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        now = time.time()
        window = int(now // window_seconds)
        reset_time = (window + 1) * window_seconds
        redis_key = f"rate_limit:{tier}:{key}:{window}"

        try:
            count = await self.cache.incr_window(redis_key, window_seconds)
        except (RedisError, OSError, RuntimeError) as e:
            return _store_unavailable("counter", redis_key, max_requests, window_seconds, e)

        if count > max_requests:
            retry_after = max(1, math.ceil(reset_time - now))
            return RateLimitResult(False, max_requests, 0, reset_time, retry_after)
        return RateLimitResult(True, max_requests, max_requests - count, reset_time)
