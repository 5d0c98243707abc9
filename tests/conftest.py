"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown
- FastAPI test client
- Fake collaborators (email dispatcher, push gateway, push event bus, secret vault)
- Accounts and signed-in sessions
"""

import os

# Must be set before the app reads its settings
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JSON_LOGS", "false")

import asyncio
import itertools
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import deps
from app.core.database import Base, get_db
from app.core.errors import NotPermitted, Unavailable
from app.core.push_login import PushApprovalChannel
from app.core.rate_limiter import rate_limiter
from app.core.totp import TotpService
from app.services.credential_store import credential_store
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "Secret123"


class FakeDispatcher:
    """Captures verification emails instead of sending them."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.raise_error = False

    def send_verification_email(self, to_email, verification_code, purpose, user_name=None):
        if self.raise_error:
            raise ConnectionError("SES unreachable")
        if self.fail:
            return False
        self.sent.append({"to": to_email, "code": verification_code, "purpose": purpose})
        return True

    def last_code(self, email=None):
        for message in reversed(self.sent):
            if email is None or message["to"] == email:
                return message["code"]
        return None


class FakeNotifier:
    """Records push notifications; `ok=False` simulates an unreachable gateway."""

    def __init__(self):
        self.notifications = []
        self.ok = True

    def notify_login_request(self, tokens, request_id, email):
        self.notifications.append({"tokens": list(tokens), "request_id": request_id, "email": email})
        return self.ok


class FakeSecretService:
    """In-memory stand-in for the secret vault."""

    def __init__(self):
        self.secrets = {}
        self.reveals = 0
        self.deny = False
        self.down = False
        self._ids = itertools.count(1)

    def store(self, raw_secret, access_scope):
        ref = f"ref-{next(self._ids)}"
        self.secrets[ref] = raw_secret
        return ref

    def reveal(self, secret_ref, access_scope):
        if self.down:
            raise Unavailable("Secret storage is unavailable. Please try again.")
        if self.deny:
            raise NotPermitted()
        self.reveals += 1
        return self.secrets[secret_ref]

    def delete(self, secret_ref):
        self.secrets.pop(secret_ref, None)


class FakeEventBus:
    """In-memory pub/sub shared by channels standing in for separate worker processes."""

    def __init__(self):
        self.published = []
        self.queues = {}

    def publish(self, request_id, status):
        self.published.append((request_id, status))
        for queue in self.queues.get(request_id, []):
            queue.put_nowait(status)

    async def subscribe(self, request_id):
        queue = asyncio.Queue()
        self.queues.setdefault(request_id, []).append(queue)
        return _FakeSubscription(self, request_id, queue)


class _FakeSubscription:
    def __init__(self, bus, request_id, queue):
        self.bus = bus
        self.request_id = request_id
        self.queue = queue

    async def next_status(self):
        return await self.queue.get()

    async def close(self):
        self.bus.queues[self.request_id].remove(self.queue)


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    """Redis-backed request limits are out of the picture in tests."""
    monkeypatch.setattr(rate_limiter, "check_rate_limit", lambda *args, **kwargs: None)


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def secret_service():
    return FakeSecretService()


@pytest.fixture
def push_channel(notifier):
    return PushApprovalChannel(notifier=notifier, timeout_seconds=5)


@pytest.fixture
def totp_service(secret_service):
    return TotpService(secret_service=secret_service)


@pytest.fixture
def client(db_session, dispatcher, push_channel, totp_service):
    """
    FastAPI test client with overridden database and collaborator dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_email_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_push_channel] = lambda: push_channel
    app.dependency_overrides[deps.get_totp_service] = lambda: totp_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make_user(email="a@x.com", password=TEST_PASSWORD, display_name="Alice"):
        return credential_store.register(db_session, email, password, display_name=display_name)
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def session_tokens(db_session, user):
    """A signed-in session for `user` on device D1."""
    return credential_store.start_session(db_session, user, device_id="D1")


@pytest.fixture
def auth_headers(session_tokens):
    return {"Authorization": f"Bearer {session_tokens.access_token}"}


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
def event_bus():
    return FakeEventBus()
