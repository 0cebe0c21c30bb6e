# folio_core/database.py
"""
Database connection and session management for the snapshot store.

Only snapshots are persisted by this package; activities, quotes and FX
rates are read through the source protocols.

- SQLite: StaticPool so an in-memory database is shared across threads
- Other backends: default QueuePool with pre-ping
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from folio_core.config import settings
from folio_core.models import Base

logger = logging.getLogger(__name__)


def create_snapshot_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine for the snapshot store.

    Args:
        database_url: Overrides settings.snapshot_database_url

    Returns:
        Engine with the snapshot tables created
    """
    url = database_url or settings.snapshot_database_url
    if url is None:
        raise ValueError("No snapshot database URL configured")

    if url.lower().startswith("sqlite://"):
        logger.info("Configuring SQLite snapshot database")
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        logger.info("Configuring snapshot database pool")
        engine = create_engine(url, pool_pre_ping=True)

    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Provide a transactional scope around a series of operations.

    Commits on success, rolls back on any exception and re-raises it.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
