"""Application constants such as user roles, OTP purposes and limiter actions."""
from enum import Enum


class UserRole(str, Enum):
    SENDER = "sender"
    TRAVELER = "traveler"
    BOTH = "both"
    ADMIN = "admin"


class OTPPurpose(str, Enum):
    TWO_FACTOR = "2fa"
    EMAIL_VERIFY = "email_verify"
    PASSWORD_RESET = "password_reset"


class AttemptAction(str, Enum):
    LOGIN = "login"
    REGISTER = "register"
    PASSWORD_RESET = "password_reset"
    OTP_REQUEST = "otp_request"
    OTP_VERIFY = "otp_verify"


class RevokeReason(str, Enum):
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    ROTATED = "rotated"
    PASSWORD_RESET = "password_reset"
    REVOKED_BY_USER = "revoked_by_user"
    TOKEN_REUSE = "refresh_token_reuse"


# Brute-force guard: failed logins per email before the account is locked.
BRUTE_FORCE_MAX_FAILURES = 10
BRUTE_FORCE_WINDOW_SECONDS = 3600
