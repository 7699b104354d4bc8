"""Models package placeholder."""

__all__ = [
    "base",
    "user",
    "session",
    "login_attempt",
    "otp",
    "password_reset",
]
