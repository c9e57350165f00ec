"""Engine, session factory and unit-of-work helpers for the ledger store."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from crowdledger.config import get_settings
from crowdledger.models.base import Base

# Seconds a SQLite writer waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 30

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _build_engine(url: str) -> Engine:
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(
            url, connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
        )
    return create_engine(url, pool_pre_ping=True)


def init_engine() -> Engine:
    """Create the engine and session factory on first use."""

    global _engine, _session_factory
    if _engine is None:
        url = get_settings().database_url
        if not url:
            raise RuntimeError("DATABASE_URL is not configured.")
        _engine = _build_engine(url)
        # Services commit explicitly and keep using their objects afterwards.
        _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    return _engine


def get_engine() -> Engine:
    return _engine if _engine is not None else init_engine()


def get_sessionmaker() -> sessionmaker[Session]:
    init_engine()
    if _session_factory is None:
        raise RuntimeError("Session factory is not initialised.")
    return _session_factory


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def check_connection() -> None:
    """Round-trip a trivial query; raises ``SQLAlchemyError`` when the store is unreachable."""

    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))


def create_all() -> None:
    Base.metadata.create_all(bind=get_engine())


def close_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a block as one unit of work: commit on success, roll back on any error."""

    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""

    with get_sessionmaker()() as session:
        yield session


__all__ = [
    "atomic",
    "check_connection",
    "close_engine",
    "create_all",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_engine",
]
