from datetime import timedelta

import pytest

import app.services.otp_service as otp_service
from app.core.constants import OTPPurpose
from app.core.database import SessionLocal
from app.core.security import generate_otp
from app.models.base import utcnow
from app.models.otp import OTPCode
from app.models.user import User
from app.services.otp_service import OTPService
from app.utils.errors import InvalidOTPError


def test_generated_codes_are_six_digits():
    codes = {generate_otp() for _ in range(20)}
    assert all(len(c) == 6 and c.isdigit() for c in codes)
    assert len(codes) > 1


def test_code_is_single_use(db_session, make_user):
    user = make_user(email="otp@example.com")
    otp = OTPService.create(db_session, user, OTPPurpose.EMAIL_VERIFY)

    consumed = OTPService.consume(db_session, user, otp.code, OTPPurpose.EMAIL_VERIFY)
    assert consumed.id == otp.id
    assert consumed.is_used is True
    assert consumed.used_at is not None

    with pytest.raises(InvalidOTPError):
        OTPService.consume(db_session, user, otp.code, OTPPurpose.EMAIL_VERIFY)


def test_purpose_must_match(db_session, make_user):
    user = make_user(email="otp@example.com")
    otp = OTPService.create(db_session, user, OTPPurpose.TWO_FACTOR)

    with pytest.raises(InvalidOTPError):
        OTPService.consume(db_session, user, otp.code, OTPPurpose.EMAIL_VERIFY)
    assert OTPService.consume(db_session, user, otp.code).purpose == "2fa"


def test_expired_code_is_rejected(db_session, make_user):
    user = make_user(email="otp@example.com")
    otp = OTPService.create(db_session, user, OTPPurpose.EMAIL_VERIFY)
    otp.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(InvalidOTPError):
        OTPService.consume(db_session, user, otp.code)


def test_codes_belong_to_their_user(db_session, make_user):
    owner = make_user(email="owner@example.com")
    other = make_user(email="other@example.com")
    otp = OTPService.create(db_session, owner, OTPPurpose.EMAIL_VERIFY)

    with pytest.raises(InvalidOTPError):
        OTPService.consume(db_session, other, otp.code)


def test_concurrent_verification_consumes_the_code_once(db_session, make_user, monkeypatch):
    """Another request consumes the code after this one has matched it."""
    user = make_user(email="otp@example.com")
    otp = OTPService.create(db_session, user, OTPPurpose.EMAIL_VERIFY)
    real_verify = otp_service.verify_otp
    started = []
    winners = []

    def racing_verify(stored, given):
        if not started:
            started.append(True)
            other_db = SessionLocal()
            try:
                other_user = other_db.get(User, user.id)
                winners.append(OTPService.consume(other_db, other_user, otp.code, OTPPurpose.EMAIL_VERIFY))
            finally:
                other_db.close()
        return real_verify(stored, given)

    monkeypatch.setattr(otp_service, "verify_otp", racing_verify)

    with pytest.raises(InvalidOTPError):
        OTPService.consume(db_session, user, otp.code, OTPPurpose.EMAIL_VERIFY)

    assert [w.id for w in winners] == [otp.id]
    db_session.expire_all()
    assert db_session.get(OTPCode, otp.id).is_used is True
