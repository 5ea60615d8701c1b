"""
Engine and session factory for the timetable session file.

The repository functions never commit; session_scope() is the unit of work
that commits a batch of writes or rolls all of them back.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL
from db.models import Base

logger = logging.getLogger(__name__)


def make_engine(url: str = DATABASE_URL) -> Engine:
    """SQLite files are shared with the background checker thread."""
    if not url.startswith("sqlite"):
        return create_engine(url)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One connection, or every checkout would see an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        logger.exception("Session rolled back.")
        session.rollback()
        raise
    finally:
        session.close()
