"""Shared test fixtures for all test modules."""

import contextlib
from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

import covenant.models  # noqa: F401
from covenant.core import database as db_module
from covenant.core.database import Base, get_db
from covenant.core.locks import KeyedLocks
from covenant.repositories.memory_store import InMemorySubscriptionStore
from covenant.repositories.subscription_repository import SubscriptionRepository
from covenant.services.subscription_registry import SubscriptionRegistry

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

# Fixed reference time used by scheduling tests
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct repository testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


class FakeClock:
    """Settable clock for registries under test."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemorySubscriptionStore()


@pytest.fixture(params=["sql", "memory"])
def store(request, db_session):
    """Every SubscriptionStore implementation, for contract tests."""
    if request.param == "sql":
        return SubscriptionRepository(db_session)
    return InMemorySubscriptionStore()


@pytest.fixture
def registry(store, clock):
    return SubscriptionRegistry(store, locks=KeyedLocks(), clock=clock)


@pytest.fixture
def memory_registry(memory_store, clock):
    return SubscriptionRegistry(memory_store, locks=KeyedLocks(), clock=clock)
