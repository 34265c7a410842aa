"""Database engine & session utilities.

The DB helper is deliberately minimal: sync engine + classic session maker.
"""

import logging
import threading
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from transcript_pipeline.config import settings
from transcript_pipeline.db.base import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------


def _engine_kwargs(url: str) -> dict:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    # An in-memory database only lives as long as its connection, so every
    # session has to share the same one.
    if parsed.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


logger.info("Creating database engine for %s", settings.DATABASE_URL.split('@')[-1])
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    future=True,
    **_engine_kwargs(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# ---------------------------------------------------------------------------
# Schema provisioning.  Called explicitly by every entry point (API start-up,
# Celery worker process init, CLI) before traffic is accepted.
# ---------------------------------------------------------------------------

_schema_lock = threading.Lock()
_schema_ready = False


def _ensure_sqlite_directory() -> None:
    parsed = make_url(str(engine.url))
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def init_db() -> None:
    """Create all tables once per process. Harmless when they already exist."""
    global _schema_ready
    if _schema_ready:
        return
    with _schema_lock:
        if _schema_ready:
            return
        from transcript_pipeline import models  # noqa: F401 - registers every mapped class

        _ensure_sqlite_directory()
        Base.metadata.create_all(bind=engine)
        _schema_ready = True
        logger.info("Database tables ensured")


def reset_schema_state() -> None:
    """Forget that the schema was provisioned (used after ``drop_all``)."""
    global _schema_ready
    with _schema_lock:
        _schema_ready = False


def get_db():
    """Yields a database session and ensures it's closed after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        logger.debug("DB session closed")
