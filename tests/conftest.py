"""
Pytest configuration and fixtures for SocialNet API tests.
"""
import os

# Settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["GEO_LOOKUP_ENABLED"] = "false"
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ["EXTERNAL_IDENTITY_SECRET"] = "test-identity-secret"
os.environ["RTC_APP_ID"] = "test-app"
os.environ["RTC_APP_CERTIFICATE"] = "test-rtc-certificate"

import random
from typing import List

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from socialnet.auth import create_access_token, get_password_hash
from socialnet.config import get_settings
from socialnet.database import Base, get_db
from socialnet.deps import get_feed_composer, get_media_storage, get_push_gateway
from socialnet.limiter import limiter
from socialnet.main import app
from socialnet.models import Post, User
from socialnet.models.post import STATUS_LIVE
from socialnet.services.feed import FeedComposer
from socialnet.services.push import MulticastResult, PushGateway, TokenResult
from socialnet.services.storage import LocalMediaStorage

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    global _test_session
    try:
        yield _test_session
    finally:
        pass


class FakePushGateway(PushGateway):
    """Records multicasts; tokens listed in ``failing`` are rejected."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.raise_error = None

    def send_multicast(self, tokens: List[str], message) -> MulticastResult:
        self.calls.append((list(tokens), message))
        if self.raise_error:
            raise self.raise_error
        return MulticastResult([
            TokenResult(token=t, success=False, error="invalid-registration-token")
            if t in self.failing else
            TokenResult(token=t, success=True, message_id=f"msg-{len(self.calls)}-{i}")
            for i, t in enumerate(tokens)
        ])


@pytest.fixture(scope="function")
def push_gateway():
    return FakePushGateway()


@pytest.fixture(scope="function")
def feed_settings():
    """Settings for a deterministic feed ranking."""
    return get_settings().model_copy(update={"feed_jitter": 0.0})


@pytest.fixture(scope="function")
def db(push_gateway, feed_settings, tmp_path):
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    storage = LocalMediaStorage(get_settings().model_copy(update={"media_root": str(tmp_path)}))

    def get_test_feed_composer(db=Depends(get_db)):
        return FeedComposer(db, feed_settings, random.Random(7))

    # Override dependencies
    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_push_gateway] = lambda: push_gateway
    app.dependency_overrides[get_media_storage] = lambda: storage
    app.dependency_overrides[get_feed_composer] = get_test_feed_composer

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client."""
    with TestClient(app) as c:
        yield c


def make_user(db, email, name, role="USER", phone=None, password="testpassword123"):
    user = User(
        email=email,
        name=name,
        user_name=name.lower().replace(" ", "_"),
        phone=phone,
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def headers_for(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test user."""
    return make_user(db, "test@example.com", "Test User", phone="+15550000001")


@pytest.fixture(scope="function")
def other_user(db):
    return make_user(db, "other@example.com", "Other User", phone="+15550000002")


@pytest.fixture(scope="function")
def admin_user(db):
    return make_user(db, "admin@example.com", "Admin User", role="ADMIN", phone="+15550000003")


@pytest.fixture(scope="function")
def third_user(db):
    return make_user(db, "third@example.com", "Third User", phone="+15550000004")


@pytest.fixture(scope="function")
def auth_headers(test_user):
    """Get auth headers for the test user."""
    return headers_for(test_user)


@pytest.fixture(scope="function")
def other_headers(other_user):
    return headers_for(other_user)


@pytest.fixture(scope="function")
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture(scope="function")
def third_headers(third_user):
    return headers_for(third_user)


@pytest.fixture(scope="function")
def make_post(db):
    """Factory for live posts, bypassing the review queue."""

    def _make(author, text="Hello world", visibility="public", status=STATUS_LIVE, **fields):
        post = Post(author_id=author.id, text=text, visibility=visibility, status=status, **fields)
        db.add(post)
        db.commit()
        db.refresh(post)
        return post

    return _make
