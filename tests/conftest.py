"""Shared test fixtures for the Brandworks test suite.

Tests run against a throwaway SQLite database created once per session in a
temporary directory; every table is emptied before each test. Queue tests
use the in-memory broker (or fakeredis for the Redis broker), and webhook
endpoints are simulated with ``httpx.MockTransport``.
"""

import os
import tempfile

# Point the app at the test database before any app imports.
_TEST_DIR = tempfile.mkdtemp(prefix="brandworks-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["BROKER_BACKEND"] = "memory"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_FORMAT"] = "text"

import pytest
from fastapi.testclient import TestClient

from brandworks import models  # noqa: F401
from brandworks.database import Base, SessionLocal, engine, get_db
from brandworks.main import app
from brandworks.queues.broker import InMemoryBroker

Base.metadata.create_all(bind=engine)


class FakeClock:
    """Manually advanced epoch-seconds clock for broker tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table before each test (children first for foreign keys)."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def session_factory():
    return SessionLocal


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def broker(clock):
    return InMemoryBroker(clock=clock)


@pytest.fixture()
def client(db):
    """FastAPI TestClient with the DB dependency overridden to use the test session."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


USER_ID = "6f1c2a9e-3b7d-4e0a-9c55-0d2b7e8f1a42"
BRAND_ID = "0b8e5d1c-7a4f-4c2e-8d91-5e6f7a8b9c0d"


def make_wizard_payload(**overrides) -> dict:
    """Factory for brand-wizard job payloads (wire format)."""
    payload = {
        "userId": USER_ID,
        "brandId": BRAND_ID,
        "step": "logo-generation",
        "input": {"style": "minimal"},
        "creditCost": 4,
    }
    payload.update(overrides)
    return payload
