"""
Ledger database access.

One SQLite file holds the whole ledger. Every ledger operation runs inside
one session_scope(): it commits as a unit or rolls back as a unit, so a
stock movement and its cash entries are never stored apart.
"""

from contextlib import contextmanager
import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from ..models.base import Base
from ..utils.config import get_config

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Turn on foreign keys (consumed batches are RESTRICT-protected) and WAL."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _ledger_engine() -> Engine:
    global _engine

    if _engine is None:
        config = get_config()
        config.ensure_directories()
        logger.info(f"Opening ledger database: {config.database_path}")
        _engine = create_engine(
            config.database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Session factory bound to the ledger database (objects stay usable after commit)."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=_ledger_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def session_scope():
    """
    Transactional scope for one ledger operation.

    Commits on success, rolls back on any exception, always closes.

    Example:
        with session_scope() as session:
            session.add(Batch(product_name="Flour", ...))
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def initialize_app_database() -> None:
    """Create the ledger database file and any missing tables."""
    config = get_config()
    is_new = not config.database_exists()

    from .. import models  # noqa: F401  (registers every table on Base)

    Base.metadata.create_all(_ledger_engine())
    if is_new:
        logger.info(f"Created ledger database at: {config.database_path}")
    else:
        logger.info(f"Using ledger database at: {config.database_path}")


def close_connections() -> None:
    """Dispose of the engine; the next operation reopens it from config."""
    global _engine, _SessionFactory

    _SessionFactory = None
    if _engine is not None:
        _engine.dispose()
        _engine = None
