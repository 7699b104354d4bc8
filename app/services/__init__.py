"""Service layer package."""

__all__ = [
    "auth_service",
    "token_service",
    "otp_service",
    "rate_limiter",
    "email_service",
]
