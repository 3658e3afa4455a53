"""Process-wide engine and session factory for the signal store."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None

_NOT_INITIALISED = "Database engine not initialised, call init_engine() first"


def driver_url(url: str) -> str:
    """Pin bare ``postgresql://`` URLs to the psycopg 3 driver."""
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def init_engine(url: str, **kwargs) -> Engine:
    """Create the engine and a session factory whose objects survive commit.

    Store operations hand detached values back to the passes, so sessions are
    built with ``expire_on_commit=False``.
    """
    global _engine, _SessionLocal
    _engine = create_engine(driver_url(url), pool_pre_ping=True, **kwargs)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections; a later init_engine() starts afresh."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _engine


def get_sessionmaker() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError(_NOT_INITIALISED)
    return _SessionLocal


def get_session() -> Generator[Session, None, None]:
    """Yield a session, closing it when done."""
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()
