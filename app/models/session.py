"""User session model backing refresh-token rotation."""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import utcnow


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Only the SHA-256 of the refresh token is stored, never the token itself.
    refresh_token_hash = Column(String(64), nullable=False, unique=True, index=True)
    access_jti = Column(String(128), nullable=True)

    # Session metadata
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device_info = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_accessed_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # Revocation
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    revoked_at = Column(DateTime, nullable=True)
    revoked_reason = Column(String(50), nullable=True)
    replaced_by_id = Column(String(36), nullable=True)

    user = relationship("User", back_populates="sessions")

    def is_valid(self, now=None) -> bool:
        now = now or utcnow()
        return bool(self.is_active) and self.revoked_at is None and self.expires_at > now

    def to_dict(self, current_session_id: str | None = None) -> dict:
        return {
            "id": self.id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "deviceInfo": self.device_info,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastAccessedAt": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "isCurrent": self.id == current_session_id,
        }
