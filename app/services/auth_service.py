import logging
import smtplib
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import AttemptAction, OTPPurpose, RevokeReason
from app.core.security import (
    dummy_password_hash, hash_password, verify_password, hash_token, generate_urlsafe_token,
)
from app.models.base import utcnow
from app.models.password_reset import PasswordResetToken
from app.models.session import UserSession
from app.models.user import User, Profile
from app.services import email_service
from app.services.otp_service import OTPService
from app.services.rate_limiter import record_attempt
from app.services.token_service import TokenService
from app.utils.errors import (
    AccountInactiveError, ConflictError, InvalidCredentialsError,
    InvalidOTPError, InvalidResetTokenError,
)

logger = logging.getLogger(__name__)

EMAIL_ERRORS = (smtplib.SMTPException, OSError, RuntimeError)


def _display_name(user: User) -> str:
    if user.profile and user.profile.first_name:
        return user.profile.first_name
    return user.username


class AuthService:

    @staticmethod
    def register(
        db: Session,
        email: str,
        password: str,
        username: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        role: str = "both",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Create user + profile + first session in one transaction.
        - 409 distinguishes EMAIL_EXISTS from USERNAME_EXISTS
        - every attempt lands in the attempt log for the registration limit
        """
        email = email.strip().lower()

        existing = db.query(User).filter(
            or_(User.email == email, User.username == username)
        ).first()
        if existing:
            code = "EMAIL_EXISTS" if existing.email == email else "USERNAME_EXISTS"
            record_attempt(
                db, AttemptAction.REGISTER, success=False, ip_address=ip_address,
                email=email, user_agent=user_agent, failure_reason=code,
            )
            raise ConflictError(
                "Email already registered" if code == "EMAIL_EXISTS" else "Username already taken",
                code=code,
            )

        user = User(
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=role,
        )
        user.profile = Profile(first_name=first_name, last_name=last_name)

        try:
            db.add(user)
            db.flush()
            session, tokens = TokenService.create_session(
                db, user, ip_address=ip_address, user_agent=user_agent, commit=False,
            )
            record_attempt(
                db, AttemptAction.REGISTER, success=True, ip_address=ip_address,
                email=email, user_id=user.id, user_agent=user_agent, commit=False,
            )
            db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration with the same email/username.
            db.rollback()
            record_attempt(
                db, AttemptAction.REGISTER, success=False, ip_address=ip_address,
                email=email, user_agent=user_agent, failure_reason="CONFLICT",
            )
            raise ConflictError("Email or username already exists")

        db.refresh(user)
        logger.info("Registered user %s", user.id)
        return {"user": user, "tokens": tokens, "sessionId": session.id}

    @staticmethod
    def login(
        db: Session,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Email/password login
        - Unknown email and wrong password fail identically
        - Failures are committed to the attempt log before raising
        - 2FA users on an unrecognised device get an OTP instead of tokens
        """
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()

        def fail(reason: str, exc):
            record_attempt(
                db, AttemptAction.LOGIN, success=False, ip_address=ip_address, email=email,
                user_id=user.id if user else None, user_agent=user_agent, failure_reason=reason,
            )
            logger.warning("Failed login for %s from %s: %s", email, ip_address, reason)
            raise exc

        if not user:
            # Same bcrypt cost as a wrong password.
            verify_password(password, dummy_password_hash())
            fail("user_not_found", InvalidCredentialsError())
        if not user.is_active:
            fail("account_inactive", AccountInactiveError())
        if not verify_password(password, user.password_hash):
            fail("invalid_password", InvalidCredentialsError())

        if user.two_factor_enabled and not AuthService._is_known_device(db, user, ip_address, user_agent):
            otp = OTPService.create(db, user, OTPPurpose.TWO_FACTOR)
            AuthService._deliver_otp(user, otp.code, OTPPurpose.TWO_FACTOR)
            logger.info("Login for user %s pending 2FA on a new device", user.id)
            result = {"requiresOtp": True, "message": "Verification code sent to your email"}
            if not settings.is_production:
                result["code"] = otp.code
            return result

        return AuthService._complete_login(db, user, ip_address, user_agent)

    @staticmethod
    def _complete_login(db: Session, user: User, ip_address: Optional[str], user_agent: Optional[str]) -> dict:
        session, tokens = TokenService.create_session(
            db, user, ip_address=ip_address, user_agent=user_agent, commit=False,
        )
        user.last_login_at = utcnow()
        record_attempt(
            db, AttemptAction.LOGIN, success=True, ip_address=ip_address, email=user.email,
            user_id=user.id, user_agent=user_agent, commit=False,
        )
        db.commit()
        db.refresh(user)
        logger.info("User %s logged in (session %s)", user.id, session.id)
        return {"user": user, "tokens": tokens, "sessionId": session.id}

    @staticmethod
    def _is_known_device(db: Session, user: User, ip_address: Optional[str], user_agent: Optional[str]) -> bool:
        since = utcnow() - timedelta(days=settings.TRUSTED_DEVICE_DAYS)
        return db.query(UserSession.id).filter(
            UserSession.user_id == user.id,
            UserSession.ip_address == ip_address,
            UserSession.user_agent == user_agent,
            UserSession.created_at >= since,
        ).first() is not None

    @staticmethod
    def _deliver_otp(user: User, code: str, purpose: OTPPurpose) -> None:
        try:
            email_service.send_otp_email(user.email, _display_name(user), code, purpose.value)
        except EMAIL_ERRORS:
            logger.exception("Failed to send %s OTP to user %s", purpose.value, user.id)

    @staticmethod
    def find_user_by_email(db: Session, email: Optional[str]) -> Optional[User]:
        if not email:
            return None
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def refresh(db: Session, refresh_token: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> dict:
        return TokenService.rotate(db, refresh_token, ip_address=ip_address, user_agent=user_agent)

    @staticmethod
    def logout(db: Session, refresh_token: Optional[str]) -> dict:
        if refresh_token:
            TokenService.revoke(db, refresh_token, reason=RevokeReason.LOGOUT)
        return {"message": "Logged out successfully"}

    @staticmethod
    def logout_all(db: Session, user_id: int) -> dict:
        revoked = TokenService.revoke_all(db, user_id, reason=RevokeReason.LOGOUT_ALL)
        return {"message": "Logged out from all devices", "revokedSessions": revoked}

    @staticmethod
    def send_password_reset(db: Session, email: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> dict:
        """Same response whether or not the email is registered."""
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()

        record_attempt(
            db, AttemptAction.PASSWORD_RESET, success=user is not None, ip_address=ip_address,
            email=email, user_id=user.id if user else None, user_agent=user_agent,
        )

        if user and user.is_active:
            raw_token = generate_urlsafe_token()
            now = utcnow()
            db.add(PasswordResetToken(
                user_id=user.id,
                token_hash=hash_token(raw_token),
                created_at=now,
                expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
            ))
            db.commit()
            try:
                email_service.send_password_reset_email(user.email, _display_name(user), raw_token)
            except EMAIL_ERRORS:
                logger.exception("Failed to send password reset email to user %s", user.id)

        return {"message": "If an account with that email exists, we sent a password reset link."}

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> dict:
        """
        Consume a reset token exactly once and set the new password.
        - bumps token_version so outstanding refresh tokens stop verifying
        - revokes every session of the user
        """
        now = utcnow()
        reset = db.query(PasswordResetToken).filter(
            PasswordResetToken.token_hash == hash_token(token),
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at > now,
        ).first()
        if not reset:
            raise InvalidResetTokenError()

        claimed = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.id == reset.id, PasswordResetToken.used_at.is_(None))
            .update({PasswordResetToken.used_at: now}, synchronize_session=False)
        )
        if claimed != 1:
            db.rollback()
            raise InvalidResetTokenError()

        user = db.query(User).filter(User.id == reset.user_id).first()
        user.password_hash = hash_password(new_password)
        user.token_version = (user.token_version or 0) + 1
        TokenService.revoke_all(db, user.id, reason=RevokeReason.PASSWORD_RESET, commit=False)
        db.commit()

        logger.info("Password reset for user %s; all sessions revoked", user.id)
        return {"message": "Password reset successfully. Please log in with your new password."}

    @staticmethod
    def request_otp(
        db: Session,
        user: User,
        purpose: OTPPurpose,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        record_attempt(
            db, AttemptAction.OTP_REQUEST, success=True, ip_address=ip_address, email=user.email,
            user_id=user.id, user_agent=user_agent, commit=False,
        )
        otp = OTPService.create(db, user, purpose)
        AuthService._deliver_otp(user, otp.code, purpose)
        result = {
            "message": "OTP sent successfully",
            "expiresIn": settings.OTP_EXPIRE_MINUTES * 60,
        }
        if not settings.is_production:
            result["code"] = otp.code
        return result

    @staticmethod
    def verify_otp(
        db: Session,
        user: Optional[User],
        code: str,
        purpose: Optional[OTPPurpose] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Consume an OTP and apply its effect
        - email_verify: marks the email verified
        - 2fa: completes a pending login and returns tokens
        - password_reset: consumed only
        Every outcome is logged for the verify rate limit.
        """
        if not user:
            record_attempt(
                db, AttemptAction.OTP_VERIFY, success=False, ip_address=ip_address,
                user_agent=user_agent, failure_reason="unknown_user",
            )
            raise InvalidOTPError()

        try:
            otp = OTPService.consume(db, user, code, purpose)
        except InvalidOTPError:
            record_attempt(
                db, AttemptAction.OTP_VERIFY, success=False, ip_address=ip_address, email=user.email,
                user_id=user.id, user_agent=user_agent, failure_reason="invalid_code",
            )
            raise

        record_attempt(
            db, AttemptAction.OTP_VERIFY, success=True, ip_address=ip_address, email=user.email,
            user_id=user.id, user_agent=user_agent,
        )

        if otp.purpose == OTPPurpose.EMAIL_VERIFY.value:
            user.email_verified = True
            db.commit()
            return {"message": "Email verified successfully", "purpose": otp.purpose}

        if otp.purpose == OTPPurpose.TWO_FACTOR.value:
            result = AuthService._complete_login(db, user, ip_address, user_agent)
            result["purpose"] = otp.purpose
            return result

        return {"message": "Code verified successfully", "purpose": otp.purpose}
