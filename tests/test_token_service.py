import types
import uuid
from datetime import timedelta

import pytest

import app.services.token_service as token_service
from app.core.database import SessionLocal

from app.core.constants import RevokeReason
from app.core.security import create_access_token, hash_token
from app.models.base import utcnow
from app.models.session import UserSession
from app.services.token_service import TokenService
from app.utils.errors import InvalidSessionError, InvalidTokenError, TokenExpiredError


@pytest.fixture
def user(make_user):
    return make_user(email="tokens@example.com")


def test_issue_embeds_session_and_role(user):
    tokens = TokenService.issue(user, "sid-1")
    access = TokenService.verify_access(tokens["accessToken"])
    refresh = TokenService.verify_refresh(tokens["refreshToken"])

    assert access["sub"] == str(user.id)
    assert access["sid"] == refresh["sid"] == "sid-1"
    assert access["role"] == "both"
    assert refresh["ver"] == 0
    assert tokens["expiresIn"] == 15 * 60


def test_access_and_refresh_secrets_are_not_interchangeable(user):
    tokens = TokenService.issue(user, "sid-1")
    with pytest.raises(InvalidTokenError):
        TokenService.verify_refresh(tokens["accessToken"])
    with pytest.raises(InvalidTokenError):
        TokenService.verify_access(tokens["refreshToken"])


def test_expired_access_token(user):
    token, _, _ = create_access_token(user.id, user.email, user.role, "sid-1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError):
        TokenService.verify_access(token)


def test_only_the_refresh_token_hash_is_stored(db_session, user):
    session, tokens = TokenService.create_session(db_session, user, ip_address="1.2.3.4", user_agent="pytest")

    assert session.refresh_token_hash == hash_token(tokens["refreshToken"])
    stored = db_session.query(UserSession).filter(UserSession.refresh_token_hash == tokens["refreshToken"]).first()
    assert stored is None


def test_rotate_revokes_old_and_links_successor(db_session, user):
    old, tokens = TokenService.create_session(db_session, user, ip_address="1.2.3.4", user_agent="pytest")

    result = TokenService.rotate(db_session, tokens["refreshToken"])
    new_id = result["sessionId"]

    db_session.expire_all()
    old = db_session.get(UserSession, old.id)
    new = db_session.get(UserSession, new_id)
    assert new_id != old.id
    assert old.is_active is False
    assert old.revoked_reason == RevokeReason.ROTATED.value
    assert old.replaced_by_id == new_id
    assert new.is_active is True
    assert new.ip_address == "1.2.3.4"
    assert TokenService.verify_refresh(result["tokens"]["refreshToken"])["sid"] == new_id


def test_replayed_token_revokes_the_successor(db_session, user):
    _, tokens = TokenService.create_session(db_session, user)
    first = TokenService.rotate(db_session, tokens["refreshToken"])
    second = TokenService.rotate(db_session, first["tokens"]["refreshToken"])

    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])

    db_session.expire_all()
    current = db_session.get(UserSession, second["sessionId"])
    assert current.is_active is False
    assert current.revoked_reason == RevokeReason.TOKEN_REUSE.value
    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, second["tokens"]["refreshToken"])


def test_rotate_rejects_expired_session_without_opening_a_new_one(db_session, user):
    session, tokens = TokenService.create_session(db_session, user)
    session.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])
    assert db_session.query(UserSession).filter(UserSession.user_id == user.id).count() == 1


def test_rotate_rejects_stale_token_version(db_session, user):
    _, tokens = TokenService.create_session(db_session, user)
    user.token_version = 1
    db_session.commit()

    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])


def test_rotate_rejects_unknown_but_well_signed_token(db_session, user):
    tokens = TokenService.issue(user, "never-persisted")
    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])


def test_revoke_is_idempotent(db_session, user):
    _, tokens = TokenService.create_session(db_session, user)
    assert TokenService.revoke(db_session, tokens["refreshToken"]) is True
    assert TokenService.revoke(db_session, tokens["refreshToken"]) is False
    assert TokenService.revoke(db_session, "not-a-token") is False


def test_revoke_all_and_list_sessions(db_session, user, make_user):
    other = make_user(email="other@example.com")
    TokenService.create_session(db_session, user)
    TokenService.create_session(db_session, user)
    TokenService.create_session(db_session, other)

    assert len(TokenService.list_sessions(db_session, user.id)) == 2
    assert TokenService.revoke_all(db_session, user.id) == 2
    assert TokenService.revoke_all(db_session, user.id) == 0
    assert TokenService.list_sessions(db_session, user.id) == []
    assert len(TokenService.list_sessions(db_session, other.id)) == 1


def test_session_validity(db_session, user):
    session, _ = TokenService.create_session(db_session, user)
    now = utcnow()
    assert session.is_valid(now) is True
    assert session.is_valid(session.expires_at) is False

    session.revoked_at = now
    assert session.is_valid(now) is False


def test_rotate_rejects_logged_out_session(db_session, user):
    _, tokens = TokenService.create_session(db_session, user)
    TokenService.revoke(db_session, tokens["refreshToken"])

    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])
    assert db_session.query(UserSession).filter(UserSession.user_id == user.id).count() == 1


def test_concurrent_rotation_has_exactly_one_winner(db_session, user, monkeypatch):
    """A second request rotates the same token after this one has read the row."""
    _, tokens = TokenService.create_session(db_session, user)
    real_uuid4 = uuid.uuid4
    started = []
    winners = []

    def racing_uuid4():
        if not started:
            started.append(True)
            other_db = SessionLocal()
            try:
                winners.append(TokenService.rotate(other_db, tokens["refreshToken"]))
            finally:
                other_db.close()
        return real_uuid4()

    monkeypatch.setattr(token_service, "uuid", types.SimpleNamespace(uuid4=racing_uuid4))

    with pytest.raises(InvalidSessionError):
        TokenService.rotate(db_session, tokens["refreshToken"])

    assert len(winners) == 1
    db_session.expire_all()
    sessions = db_session.query(UserSession).filter(UserSession.user_id == user.id).all()
    assert len(sessions) == 2
    active = [s for s in sessions if s.is_active]
    assert [s.id for s in active] == [winners[0]["sessionId"]]
    rotated = [s for s in sessions if s.revoked_reason == RevokeReason.ROTATED.value]
    assert len(rotated) == 1
    assert rotated[0].replaced_by_id == winners[0]["sessionId"]


def test_touch_skips_revoked_sessions(db_session, user):
    session, tokens = TokenService.create_session(db_session, user)
    session.last_accessed_at = utcnow() - timedelta(hours=1)
    db_session.commit()

    assert TokenService.touch(db_session, session.id, user.id + 1) is False
    assert TokenService.touch(db_session, session.id, user.id) is True
    assert TokenService.touch(db_session, session.id, user.id) is False

    TokenService.revoke(db_session, tokens["refreshToken"])
    db_session.query(UserSession).filter(UserSession.id == session.id).update(
        {UserSession.last_accessed_at: utcnow() - timedelta(hours=1)}, synchronize_session=False
    )
    db_session.commit()
    assert TokenService.touch(db_session, session.id, user.id) is False
    assert TokenService.touch(db_session, None, user.id) is False
