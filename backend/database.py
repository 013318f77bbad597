"""Database setup and session management."""

import logging
from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _db_file_path(database_url: str) -> Path | None:
    """Extract the filesystem path from a ``sqlite:///`` URL.

    Returns ``None`` for in-memory databases (``:memory:`` or empty path)
    and for non-SQLite URLs.
    """
    if not database_url.startswith("sqlite"):
        return None
    # sqlite:///./ledger.db  ->  ./ledger.db
    # sqlite:///:memory:     ->  :memory:
    path_part = database_url.split("///", 1)[-1]
    if not path_part or path_part == ":memory:":
        return None
    return Path(path_part)


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create all tables that don't exist yet."""
    # Import models so every table is registered on Base.metadata
    import models  # noqa: F401

    engine = get_engine()
    db_path = _db_file_path(settings.DATABASE_URL)
    if db_path is not None and not db_path.exists():
        logger.info("Creating new database at %s", db_path)
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exception that commits internally:
      - ``LotLedgerService``: commits each lot mutation while holding the
        per-key lock so concurrent callers never read a stale lot set
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
