import re
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional

from app.core.constants import OTPPurpose, UserRole


def _check_password_strength(v: str) -> str:
    """Password must contain uppercase, lowercase and a digit"""
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain an uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain a lowercase letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain a digit')
    return v


class AuthRequest(BaseModel):
    """Accepts camelCase keys from the web client and snake_case alike."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class RegisterRequest(AuthRequest):
    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: str = Field(..., min_length=8, max_length=72)
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: UserRole = UserRole.BOTH

    @field_validator('password')
    @classmethod
    def password_strength(cls, v):
        return _check_password_strength(v)

    @field_validator('role')
    @classmethod
    def no_self_service_admin(cls, v):
        if v == UserRole.ADMIN:
            raise ValueError('role must be one of sender, traveler, both')
        return v


class LoginRequest(AuthRequest):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshTokenRequest(AuthRequest):
    """Refresh token in the body; the HTTP-only cookie is used when absent."""
    refresh_token: Optional[str] = None


class ForgotPasswordRequest(AuthRequest):
    email: EmailStr


class ResetPasswordRequest(AuthRequest):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator('password')
    @classmethod
    def password_strength(cls, v):
        return _check_password_strength(v)


class OTPRequest(AuthRequest):
    type: OTPPurpose


class OTPVerifyRequest(AuthRequest):
    code: str = Field(..., pattern=r"^[0-9]{6}$")
    type: Optional[OTPPurpose] = None
    email: Optional[EmailStr] = None
