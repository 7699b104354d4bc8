from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt
import secrets
import pyotp
import hashlib
import hmac
from functools import lru_cache
from app.core.config import settings
from app.utils.errors import InvalidTokenError, TokenExpiredError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def hash_password(password: str) -> str:
    if not password or not isinstance(password, str):
        raise ValueError("Password must be a non-empty string")
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    if not isinstance(plain_password, str):
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash of a random secret, verified against when the account does not exist."""
    return hash_password(secrets.token_urlsafe(16))


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_urlsafe_token() -> str:
    return secrets.token_urlsafe(32)


def _create_jwt(payload: Dict[str, Any], secret: str, expires_delta: timedelta) -> tuple[str, str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    jti = secrets.token_urlsafe(16)

    payload.update({
        "iat": now,
        "exp": expire,
        "jti": jti,
    })

    token = jwt.encode(payload, secret, algorithm=settings.ALGORITHM)
    return token, jti, expire


def create_access_token(
    user_id: int,
    email: str,
    role: str,
    session_id: str,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, str, datetime]:
    return _create_jwt(
        payload={
            "type": ACCESS_TOKEN_TYPE,
            "sub": str(user_id),
            "email": email,
            "role": role,
            "sid": session_id,
        },
        secret=settings.ACCESS_TOKEN_SECRET,
        expires_delta=expires_delta
        or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(
    user_id: int,
    session_id: str,
    token_version: int,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, str, datetime]:
    return _create_jwt(
        payload={
            "type": REFRESH_TOKEN_TYPE,
            "sub": str(user_id),
            "sid": session_id,
            "ver": token_version,
        },
        secret=settings.REFRESH_TOKEN_SECRET,
        expires_delta=expires_delta
        or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def _decode(token: str, secret: str, token_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise InvalidTokenError()

    if payload.get("type") != token_type or not payload.get("sub") or not payload.get("sid"):
        raise InvalidTokenError()
    return payload


def decode_access_token(token: str) -> Dict[str, Any]:
    return _decode(token, settings.ACCESS_TOKEN_SECRET, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> Dict[str, Any]:
    return _decode(token, settings.REFRESH_TOKEN_SECRET, REFRESH_TOKEN_TYPE)


def generate_otp() -> str:
    """Random numeric code of ``OTP_LENGTH`` digits.

    The TOTP secret is thrown away: it only serves as a source of a uniformly
    distributed code, validity is tracked by the stored expiry instead.
    """
    totp = pyotp.TOTP(pyotp.random_base32(), digits=settings.OTP_LENGTH)
    return totp.now()


def verify_otp(stored_otp: str, provided_otp: str) -> bool:
    if not stored_otp or not provided_otp:
        return False
    return hmac.compare_digest(stored_otp, provided_otp)
