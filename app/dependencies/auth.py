from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import decode_access_token
from app.models.user import User
from app.services.token_service import TokenService
from app.utils.errors import AccountInactiveError, AuthenticationError, AuthorizationError, InvalidTokenError

security = HTTPBearer(auto_error=False)


async def get_token_payload(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Verify the bearer access token by signature and expiry."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")
    payload = decode_access_token(credentials.credentials)
    request.state.auth = payload
    return payload


def _load_user(db: Session, payload: dict) -> User:
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidTokenError()

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise InvalidTokenError()
    if not user.is_active:
        raise AccountInactiveError()
    return user


async def get_current_user(
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> User:
    """Verify JWT token and return current user"""
    user = _load_user(db, payload)
    TokenService.touch(db, payload.get("sid"), user.id)
    return user


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Current user when a valid bearer token is sent, otherwise None."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        payload = decode_access_token(credentials.credentials)
    except InvalidTokenError:
        return None
    request.state.auth = payload
    return _load_user(db, payload)


def require_role(*roles: str):
    """Dependency factory: 403 unless the caller's role is one of ``roles``."""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError("Insufficient role for this resource")
        return current_user

    return checker
