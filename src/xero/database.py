"""Engine and sessions for the credential and activity log tables.

Both tables live in the database named by DATABASE_URL. Without it, callers
receive a None session and fall back to file/in-memory storage.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.xero.models import ActivityLogRecord, Base, XeroCredential

logger = logging.getLogger(__name__)

TABLES = [XeroCredential.__table__, ActivityLogRecord.__table__]

# Bound lazily to the URL in effect on first use
_engine: Optional[Engine] = None
_sessions: Optional[sessionmaker] = None
_bound_url: Optional[str] = None


def get_database_url() -> Optional[str]:
    """DATABASE_URL with Heroku/Render-style postgres:// rewritten for SQLAlchemy 2.0."""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def is_database_configured() -> bool:
    return get_database_url() is not None


def _create_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, or every session would see an empty database
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True)


def init_db() -> bool:
    """
    Bind to DATABASE_URL and create xero_credentials / xero_activity_log.

    Rebinds when DATABASE_URL has changed since the last call.

    Returns:
        True when the tables are ready, False when no database is configured
        or it could not be reached.
    """
    global _engine, _sessions, _bound_url

    url = get_database_url()
    if not url:
        logger.debug("DATABASE_URL not set, using file and in-memory storage")
        return False

    if _sessions is not None and url == _bound_url:
        return True

    reset_db()
    try:
        engine = _create_engine(url)
        Base.metadata.create_all(engine, tables=TABLES)
    except SQLAlchemyError as e:
        logger.error(f"Database unavailable: {e}")
        return False

    _engine = engine
    _sessions = sessionmaker(bind=engine)
    _bound_url = url
    logger.info(f"Database ready: {', '.join(t.name for t in TABLES)}")
    return True


def reset_db() -> None:
    """Dispose the current engine; the next session rebinds."""
    global _engine, _sessions, _bound_url

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None
    _bound_url = None


@contextmanager
def get_session() -> Generator[Optional[Session], None, None]:
    """
    Yield a session, or None when no database is configured.

    Callers commit; anything uncommitted is rolled back on error.
    """
    if not init_db():
        yield None
        return

    session = _sessions()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
