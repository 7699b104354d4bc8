"""Token issuance, rotation and revocation.

Access tokens are verified by signature and expiry only. Refresh tokens are
additionally bound to a ``UserSession`` row through the SHA-256 of the raw
token, and every state change on that row goes through a conditional UPDATE
so two concurrent refreshes of the same token cannot both win.
"""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import RevokeReason
from app.core.security import (
    create_access_token, create_refresh_token,
    decode_access_token, decode_refresh_token, hash_token,
)
from app.models.base import utcnow
from app.models.session import UserSession
from app.models.user import User
from app.utils.errors import InvalidSessionError, NotFoundError
from app.utils.helpers import describe_device

logger = logging.getLogger(__name__)

SESSION_TOUCH_INTERVAL = timedelta(seconds=60)


class TokenService:

    @staticmethod
    def verify_access(token: str) -> dict:
        return decode_access_token(token)

    @staticmethod
    def verify_refresh(token: str) -> dict:
        return decode_refresh_token(token)

    @staticmethod
    def _sign_pair(user: User, session_id: str) -> tuple[dict, str]:
        access_token, access_jti, _ = create_access_token(
            user_id=user.id,
            email=user.email,
            role=user.role,
            session_id=session_id,
        )
        refresh_token, _, _ = create_refresh_token(
            user_id=user.id,
            session_id=session_id,
            token_version=user.token_version or 0,
        )
        tokens = {
            "accessToken": access_token,
            "refreshToken": refresh_token,
            "tokenType": "bearer",
            "expiresIn": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }
        return tokens, access_jti

    @staticmethod
    def issue(user: User, session_id: str) -> dict:
        tokens, _ = TokenService._sign_pair(user, session_id)
        return tokens

    @staticmethod
    def create_session(
        db: Session,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
        commit: bool = True,
    ) -> tuple[UserSession, dict]:
        """Persist a new session and sign its token pair.

        The session id is generated up front so it can be embedded in both
        tokens before the row, which needs the refresh token hash, is written.
        """
        session_id = session_id or str(uuid.uuid4())
        tokens, access_jti = TokenService._sign_pair(user, session_id)

        now = utcnow()
        session = UserSession(
            id=session_id,
            user_id=user.id,
            refresh_token_hash=hash_token(tokens["refreshToken"]),
            access_jti=access_jti,
            ip_address=ip_address,
            user_agent=user_agent,
            device_info=describe_device(user_agent),
            created_at=now,
            last_accessed_at=now,
            expires_at=now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            is_active=True,
        )

        db.add(session)
        if commit:
            db.commit()
        else:
            db.flush()
        return session, tokens

    @staticmethod
    def _revoke_where(db: Session, *criteria, reason: RevokeReason, replaced_by_id: Optional[str] = None) -> int:
        """Flip matching active sessions to revoked in one UPDATE; returns the row count."""
        values = {
            UserSession.is_active: False,
            UserSession.revoked_at: utcnow(),
            UserSession.revoked_reason: reason.value,
        }
        if replaced_by_id:
            values[UserSession.replaced_by_id] = replaced_by_id
        return (
            db.query(UserSession)
            .filter(
                *criteria,
                UserSession.is_active.is_(True),
                UserSession.revoked_at.is_(None),
            )
            .update(values, synchronize_session=False)
        )

    @staticmethod
    def rotate(
        db: Session,
        refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """Exchange a refresh token for a new pair under a new session id.

        Raises ``InvalidTokenError``/``TokenExpiredError`` for a bad JWT and
        ``InvalidSessionError`` when the token has no active session, which
        also covers replay of an already rotated token.
        """
        payload = decode_refresh_token(refresh_token)
        token_hash = hash_token(refresh_token)
        now = utcnow()

        session = db.query(UserSession).filter(UserSession.refresh_token_hash == token_hash).first()
        if not session or session.id != payload.get("sid") or str(session.user_id) != payload.get("sub"):
            raise InvalidSessionError()

        if session.revoked_reason == RevokeReason.ROTATED.value:
            TokenService._handle_reuse(db, session)
            raise InvalidSessionError()

        if not session.is_valid(now):
            raise InvalidSessionError()

        user = db.query(User).filter(User.id == session.user_id).first()
        if not user or not user.is_active or payload.get("ver") != (user.token_version or 0):
            raise InvalidSessionError()

        # Claim the old session; a concurrent rotation that got here first leaves 0 rows.
        new_session_id = str(uuid.uuid4())
        claimed = TokenService._revoke_where(
            db,
            UserSession.id == session.id,
            UserSession.refresh_token_hash == token_hash,
            UserSession.expires_at > now,
            reason=RevokeReason.ROTATED,
            replaced_by_id=new_session_id,
        )
        if claimed != 1:
            db.rollback()
            raise InvalidSessionError()

        new_session, tokens = TokenService.create_session(
            db,
            user,
            ip_address=ip_address or session.ip_address,
            user_agent=user_agent or session.user_agent,
            session_id=new_session_id,
            commit=False,
        )
        db.commit()
        logger.info("Rotated session %s -> %s for user %s", session.id, new_session.id, user.id)
        return {"user": user, "tokens": tokens, "sessionId": new_session.id}

    @staticmethod
    def _handle_reuse(db: Session, session: UserSession) -> None:
        """A rotated token came back: revoke whatever session descends from it."""
        logger.warning("Refresh token reuse detected for session %s (user %s)", session.id, session.user_id)
        successor_id = session.replaced_by_id
        seen = {session.id}
        while successor_id and successor_id not in seen:
            seen.add(successor_id)
            TokenService._revoke_where(db, UserSession.id == successor_id, reason=RevokeReason.TOKEN_REUSE)
            successor = db.query(UserSession.replaced_by_id).filter(UserSession.id == successor_id).first()
            successor_id = successor[0] if successor else None
        db.commit()

    @staticmethod
    def revoke(db: Session, refresh_token: str, reason: RevokeReason = RevokeReason.LOGOUT) -> bool:
        """Revoke the session holding this refresh token. Idempotent."""
        revoked = TokenService._revoke_where(
            db,
            UserSession.refresh_token_hash == hash_token(refresh_token),
            reason=reason,
        )
        db.commit()
        return revoked > 0

    @staticmethod
    def revoke_all(db: Session, user_id: int, reason: RevokeReason = RevokeReason.LOGOUT_ALL, commit: bool = True) -> int:
        revoked = TokenService._revoke_where(db, UserSession.user_id == user_id, reason=reason)
        if commit:
            db.commit()
        if revoked:
            logger.info("Revoked %s session(s) for user %s (%s)", revoked, user_id, reason.value)
        return revoked

    @staticmethod
    def revoke_session(db: Session, user_id: int, session_id: str) -> None:
        exists = db.query(UserSession.id).filter(
            UserSession.id == session_id,
            UserSession.user_id == user_id,
        ).first()
        if not exists:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        TokenService._revoke_where(
            db,
            UserSession.id == session_id,
            UserSession.user_id == user_id,
            reason=RevokeReason.REVOKED_BY_USER,
        )
        db.commit()

    @staticmethod
    def touch(db: Session, session_id: Optional[str], user_id: int) -> bool:
        """Bump ``last_accessed_at`` for an authenticated request, at most once per interval."""
        if not session_id:
            return False
        now = utcnow()
        touched = (
            db.query(UserSession)
            .filter(
                UserSession.id == session_id,
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.last_accessed_at < now - SESSION_TOUCH_INTERVAL,
            )
            .update({UserSession.last_accessed_at: now}, synchronize_session=False)
        )
        if touched:
            db.commit()
        return touched > 0

    @staticmethod
    def list_sessions(db: Session, user_id: int) -> list[UserSession]:
        now = utcnow()
        return (
            db.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
            )
            .order_by(UserSession.created_at.desc())
            .all()
        )
