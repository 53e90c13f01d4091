"""
Database session and engine.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from tappark.config import settings
from tappark.core.errors import TransientStoreError

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Tests and local runs; threads share the file, writers wait on the busy timeout.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_size": 8,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": 30,
    }


def make_engine(url: str):
    return create_engine(url, **_engine_kwargs(url))


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_transient(exc: BaseException) -> bool:
    """Lock timeout, deadlock, serialization failure, SQLite busy, dropped connection."""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    One short transaction: commit on success, rollback on any error.
    Transient store failures are re-raised as TransientStoreError so callers can retry the whole operation.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as e:
        db.rollback()
        if is_transient(e):
            raise TransientStoreError(str(getattr(e, "orig", None) or e)) from e
        raise
    except Exception:
        db.rollback()
        raise


def set_local_timeouts(db: Session, timeout_ms: int) -> None:
    """Bound lock waits and statements for the current transaction (PostgreSQL only)."""
    if timeout_ms <= 0 or db.get_bind().dialect.name != "postgresql":
        return
    ms = int(timeout_ms)
    db.execute(text(f"SET LOCAL lock_timeout = {ms}"))
    db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
