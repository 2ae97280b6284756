"""Shared fixtures: controllable clock, fast bcrypt and isolated stores."""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.core.database import Base
from app.services.auth_service import AuthService
from app.services.credential_service import CredentialService
from app.services.rate_limiter import rate_limiter
from app.stores.memory import memory_stores
from app.utils.datetime_utils import utc_now

# Lowest bcrypt work factor keeps the suite fast
TEST_BCRYPT_ROUNDS = 4

STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        # Starts at real time so JWT expiry checks line up with issued tokens
        self.now = start or utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", TEST_BCRYPT_ROUNDS)
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stores():
    return memory_stores()


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


class RecordingEmailService:
    """Captures reset emails instead of sending them."""

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send_reset_email(self, to_email, token, display_name):
        self.sent.append({"to": to_email, "token": token, "name": display_name})
        return self.succeed


@pytest.fixture
def email_outbox():
    return RecordingEmailService()


def build_auth_service(stores, clock, email_service=None):
    return AuthService(
        stores,
        email_service=email_service,
        clock=clock,
        credentials=CredentialService(stores.accounts, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock),
    )


@pytest.fixture
def auth_service(stores, clock, email_outbox):
    return build_auth_service(stores, clock, email_outbox)
