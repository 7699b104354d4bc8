"""Custom error definitions for API exceptions.

Every error raised by the auth core is an ``APIError``: an ``HTTPException``
that also carries a machine-readable ``code`` and, for throttling, a
``retry_after`` hint. ``app.middleware.error_handler`` renders them into the
``{"success": false, "error": {...}}`` envelope.
"""
from typing import Any, Optional
from fastapi import HTTPException
from starlette import status


class APIError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[list[dict[str, Any]]] = None,
        retry_after: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.retry_after = retry_after
        if retry_after is not None:
            headers = {**(headers or {}), "Retry-After": str(retry_after)}
        super().__init__(status_code=self.status_code, detail=self.message, headers=headers)


class ValidationError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class AuthenticationError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "Authentication required"


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class AccountInactiveError(AuthenticationError):
    code = "ACCOUNT_INACTIVE"
    message = "Account is inactive"


class InvalidTokenError(AuthenticationError):
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class TokenExpiredError(InvalidTokenError):
    code = "TOKEN_EXPIRED"
    message = "Token has expired"


class InvalidSessionError(AuthenticationError):
    code = "INVALID_SESSION"
    message = "Session is invalid or has expired"


class AuthorizationError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "You do not have permission to perform this action"


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Resource already exists"


class RateLimitError(APIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests, please try again later"


class AccountLockedError(RateLimitError):
    code = "ACCOUNT_TEMPORARILY_LOCKED"
    message = "Account temporarily locked due to too many failed attempts"


class InternalServerError(APIError):
    pass


class ServiceUnavailableError(APIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable"


class InvalidOTPError(ValidationError):
    code = "INVALID_OTP"
    message = "Invalid or expired verification code"


class InvalidResetTokenError(ValidationError):
    code = "INVALID_RESET_TOKEN"
    message = "Invalid or expired password reset token"
