"""Database package with SQLAlchemy models and session helpers."""

from .session import (
    DatabaseSettings,
    build_engine,
    get_session_factory,
    init_db,
    close_db,
    reset_database_state,
)

__all__ = [
    "DatabaseSettings",
    "build_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    "reset_database_state",
]
