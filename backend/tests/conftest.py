import itertools
import os
from datetime import datetime, timedelta

# Keep app startup off the on-disk default database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from slotswap.database import get_session, init_db
from slotswap.main import app
from slotswap.models.slot import SlotState
from slotswap.services import swap_engine
from slotswap.services.users import register_user

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. Tables are dropped and recreated for every test
# 4. App dependency overridden to use test_engine (see client_fixture)
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema"""
    init_db(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place for the entire
    duration so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine for tests that run one session per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'slotswap_race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_user(session: Session):
    """Factory: register a user with a unique email."""
    counter = itertools.count(1)

    def _make(name=None):
        n = next(counter)
        return register_user(session, name or f"User {n}", f"user{n}@example.com")

    return _make


@pytest.fixture
def make_slot(session: Session):
    """Factory: create a slot for ``owner``; each call lands on a later day unless ``start`` is given."""
    counter = itertools.count(0)

    def _make(owner, title="Standup", start=None, hours=1, offered=False):
        if start is None:
            start = datetime(2026, 3, 2, 9, 0) + timedelta(days=next(counter))
        slot = swap_engine.create_slot(session, owner.id, title, start, start + timedelta(hours=hours))
        if offered:
            slot = swap_engine.set_slot_state(session, owner.id, slot.id, SlotState.OFFERED)
        return slot

    return _make
