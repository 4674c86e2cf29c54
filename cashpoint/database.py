# cashpoint/database.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from cashpoint.core.config import settings
from cashpoint.models import Base

logger = logging.getLogger(__name__)

_engine = None
_SessionLocal = None


def _database_url() -> str:
    url = settings.DATABASE_URL
    # Railway/Heroku hand out postgres://; SQLAlchemy expects postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def get_engine():
    global _engine, _SessionLocal
    if _engine is None:
        url = _database_url()
        if not url:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_engine(url, pool_pre_ping=True, future=True)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine, future=True)
    return _engine


def get_sessionmaker():
    if _SessionLocal is None:
        get_engine()
    return _SessionLocal


def SessionLocal() -> Session:
    return get_sessionmaker()()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Unit of work: commit when the block succeeds, roll back on any error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    with db_session() as db:
        yield db


def init_db() -> None:
    engine = get_engine()
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Schema ensured on %s", engine.url.render_as_string(hide_password=True))
