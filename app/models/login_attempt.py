"""Append-only attempt log used by the durable rate limiter and brute-force guard."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.base import utcnow


class LoginAttempt(Base):
    __tablename__ = "login_attempts"

    id = Column(Integer, primary_key=True)
    action = Column(String(30), nullable=False)
    ip_address = Column(String(45), nullable=True)
    email = Column(String(255), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    user_agent = Column(String(512), nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    failure_reason = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="login_attempts")


Index("ix_login_attempts_action_ip_created", LoginAttempt.action, LoginAttempt.ip_address, LoginAttempt.created_at)
Index("ix_login_attempts_action_email_created", LoginAttempt.action, LoginAttempt.email, LoginAttempt.created_at)
