"""Pytest fixtures for async FastAPI testing.

Points the app at a throwaway SQLite file, builds a clean schema once per
session and empties every table before each test. Redis is replaced by a
small in-memory double injected through ``create_app(cache=...)`` and
outgoing email is captured in an ``outbox`` list instead of being sent.
"""
import os
import pathlib
import tempfile

import pytest

# Settings are read at import time, so the environment must be ready before
# any ``app`` module is imported by the tests.
_DB_FILE = pathlib.Path(tempfile.gettempdir()) / f"courier_auth_test_{os.getpid()}.db"
os.environ.update({
    "ENV": "test",
    "DATABASE_URL": f"sqlite:///{_DB_FILE}",
    "ACCESS_TOKEN_SECRET": "test-access-secret",
    "REFRESH_TOKEN_SECRET": "test-refresh-secret",
    "BCRYPT_ROUNDS": "4",
    "EMAIL_BACKEND": "console",
    "RATE_LIMIT_ENABLED": "True",
    "RATE_LIMIT_FAIL_OPEN": "True",
    "RATE_LIMIT_BYPASS_TOKEN": "test-bypass-token",
    "LOG_LEVEL": "WARNING",
})


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def expire(self, key, ttl):
        self.ops.append(("expire", key, ttl))
        return self

    async def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "incr":
                self.redis.store[op[1]] = self.redis.store.get(op[1], 0) + 1
                results.append(self.redis.store[op[1]])
            else:
                self.redis.ttls[op[1]] = op[2]
                results.append(True)
        self.ops = []
        return results


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the counter limiter."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def ping(self):
        return True

    async def aclose(self):
        return None


class UnreachableRedis(FakeRedis):
    def pipeline(self, transaction=True):
        from redis.exceptions import ConnectionError as RedisConnectionError

        raise RedisConnectionError("Connection refused")

    async def ping(self):
        from redis.exceptions import ConnectionError as RedisConnectionError

        raise RedisConnectionError("Connection refused")


@pytest.fixture(scope="session")
def prepare_database():
    """Create clean schema for the test session."""
    from app.core.database import engine, Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if _DB_FILE.exists():
        _DB_FILE.unlink()


@pytest.fixture(autouse=True)
def clean_tables(prepare_database):
    """Empty every table so attempt-log rate limits never leak between tests."""
    from app.core.database import Base, SessionLocal

    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session for direct DB access in tests."""
    from app.core.database import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def outbox(monkeypatch):
    """Capture outgoing email instead of talking to SMTP."""
    import app.services.email_service as email_service

    sent = []

    def fake_send_otp_email(to_email, recipient_name, otp_code, purpose):
        sent.append({"to": to_email, "kind": "otp", "code": otp_code, "purpose": purpose})
        return True

    def fake_send_password_reset_email(to_email, recipient_name, reset_token):
        sent.append({"to": to_email, "kind": "password_reset", "token": reset_token})
        return True

    monkeypatch.setattr(email_service, "send_otp_email", fake_send_otp_email)
    monkeypatch.setattr(email_service, "send_password_reset_email", fake_send_password_reset_email)
    return sent


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def unreachable_redis():
    return UnreachableRedis()


@pytest.fixture
def app(fake_redis):
    from app.cache.cache_service import RedisCache
    from app.main import create_app

    return create_app(cache=RedisCache(client=fake_redis))


@pytest.fixture
async def async_client(app, outbox):
    """Provide an httpx AsyncClient configured with the FastAPI app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def make_user(db_session):
    """Create a user (with profile) directly in the database."""
    from app.core.security import hash_password
    from app.models.user import Profile, User

    def factory(email="user@example.com", password="Abcdef12", username=None, **fields):
        user = User(
            email=email,
            username=username or email.split("@")[0].replace(".", "_")[:30],
            password_hash=hash_password(password),
            **fields,
        )
        user.profile = Profile(first_name="Test", last_name="User")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


