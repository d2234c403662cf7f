# tests/conftest.py

import os

# Settings are read at import time; these must be set before the app loads.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("DATABASE_URL_LOCAL", "sqlite://")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from enrolment_waitlist.api import deps
from enrolment_waitlist.db.session import get_db
from enrolment_waitlist.main import app
from enrolment_waitlist.models import Base


# --- Database Setup ---
# A fresh in-memory database per test, shared by every session of that test.
@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def mock_redis():
    """In-app notifications publish to Redis; never hit a real server."""
    with patch(
        "enrolment_waitlist.utils.enrolment_waitlist_notifications.redis_client",
        MagicMock(),
    ) as client:
        yield client


# --- Mock Dependencies Setup ---
class MockTokenPayload:
    def __init__(self, sub="user_123", org_id="org_abc"):
        self.sub = sub
        self.org_id = org_id


def override_get_current_user():
    return MockTokenPayload()


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def test_client(session_factory):
    """
    TestClient backed by the per-test SQLite database, with auth mocked.
    """
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_current_user] = override_get_current_user

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
