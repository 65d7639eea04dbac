"""Pytest configuration and fixtures for ledger tests."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from stockbook.models.base import Base
from stockbook.utils.config import reset_config


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import stockbook.services.database as db_module

    original_get_session_factory = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    # Restore original session factory
    db_module.get_session_factory = original_get_session_factory


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Isolate every test from the user's STOCKBOOK_* environment."""
    for var in (
        "STOCKBOOK_ENV",
        "STOCKBOOK_DATA_DIR",
        "STOCKBOOK_PAYMENT_METHOD",
        "STOCKBOOK_LOW_STOCK_THRESHOLD",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def day():
    """Return a function giving a fixed UTC datetime n days after 2024-01-01."""
    base = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def _day(n: int, hours: int = 0) -> datetime:
        return base + timedelta(days=n, hours=hours)

    return _day
