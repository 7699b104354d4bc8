"""One-time codes for 2FA, email verification and password reset."""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import OTPPurpose
from app.core.security import generate_otp, verify_otp
from app.models.base import utcnow
from app.models.otp import OTPCode
from app.models.user import User
from app.utils.errors import InvalidOTPError

logger = logging.getLogger(__name__)


class OTPService:

    @staticmethod
    def create(db: Session, user: User, purpose: OTPPurpose) -> OTPCode:
        now = utcnow()
        otp = OTPCode(
            user_id=user.id,
            code=generate_otp(),
            purpose=purpose.value,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            is_used=False,
        )
        db.add(otp)
        db.commit()
        db.refresh(otp)
        logger.info("Issued %s OTP for user %s", purpose.value, user.id)
        return otp

    @staticmethod
    def consume(db: Session, user: User, code: str, purpose: Optional[OTPPurpose] = None) -> OTPCode:
        """Mark a matching, unexpired, unused code as used, exactly once.

        The final UPDATE re-checks ``is_used`` so that of two concurrent
        verifications only the one that flips the row succeeds.
        """
        now = utcnow()
        query = db.query(OTPCode).filter(
            OTPCode.user_id == user.id,
            OTPCode.is_used.is_(False),
            OTPCode.expires_at > now,
        )
        if purpose:
            query = query.filter(OTPCode.purpose == purpose.value)

        candidates = query.order_by(OTPCode.created_at.desc()).all()
        otp = next((c for c in candidates if verify_otp(c.code, code)), None)
        if not otp:
            raise InvalidOTPError()

        updated = (
            db.query(OTPCode)
            .filter(OTPCode.id == otp.id, OTPCode.is_used.is_(False))
            .update({OTPCode.is_used: True, OTPCode.used_at: now}, synchronize_session=False)
        )
        db.commit()
        if updated != 1:
            raise InvalidOTPError()

        db.refresh(otp)
        return otp
