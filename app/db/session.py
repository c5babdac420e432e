from contextlib import contextmanager
from functools import lru_cache
import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings for PostgreSQL; SQLite (local runs) only needs cross-thread access."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": max(1, settings.database_pool_size),
        "max_overflow": max(0, settings.database_max_overflow),
        "pool_timeout": max(1, settings.database_pool_timeout_seconds),
        "pool_recycle": max(1, settings.database_pool_recycle_seconds),
    }


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    database_url = (settings.database_url or "").strip()
    if not database_url:
        logger.error("database_url_missing")
        raise RuntimeError(
            "DATABASE_URL is not configured. Set DATABASE_URL to the orders database DSN before startup."
        )
    return create_engine(database_url, **engine_options(database_url))


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    # Rows are read after commit when building API responses.
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def get_session() -> Session:
    """One short transaction: commit on success, rollback and re-raise on error."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
