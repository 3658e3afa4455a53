"""Database layer: ORM base, engine and session factory."""

from signal_executor.db.base import Base
from signal_executor.db.engine import (
    dispose_engine,
    driver_url,
    get_engine,
    get_session,
    get_sessionmaker,
    init_engine,
)

__all__ = [
    "Base",
    "dispose_engine",
    "driver_url",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_engine",
]
