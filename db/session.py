"""Database engine and session management."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base

_ENGINE: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


@dataclass(slots=True)
class DatabaseSettings:
    """Connection settings resolved from the environment."""

    url: str
    echo: bool = False
    timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        try:
            timeout = float(os.getenv("DATABASE_TIMEOUT_SECONDS", "5"))
        except ValueError:
            logger.warning("Invalid DATABASE_TIMEOUT_SECONDS; using default")
            timeout = 5.0
        return cls(
            url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./assessments.db"),
            echo=os.getenv("DATABASE_ECHO", "0") in {"1", "true", "True"},
            timeout_seconds=timeout,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def connect_args(self) -> Dict[str, Any]:
        # SQLite waits on the file lock instead of failing a concurrent writer outright
        if self.is_sqlite:
            return {"timeout": self.timeout_seconds}
        return {}


def build_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create an engine that is not shared through the module globals.

    Used by processes that run their own event loop, such as the MCP server.
    """

    settings = settings or DatabaseSettings.from_env()
    logger.info("Initializing database engine", url=settings.url)
    return create_async_engine(
        settings.url,
        echo=settings.echo,
        connect_args=settings.connect_args(),
        pool_pre_ping=not settings.is_sqlite,
    )


def get_engine() -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_engine()
    return _ENGINE


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the lazily initialised session factory."""

    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _async_session_factory


async def init_db() -> None:
    """Create the assessment schema if it does not yet exist."""

    engine = get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the database engine and close open connections."""

    global _ENGINE, _async_session_factory
    engine = _ENGINE
    _async_session_factory = None
    _ENGINE = None
    if engine is not None:
        await engine.dispose()


async def reset_database_state() -> None:
    """Drop the cached engine so the next call picks up a new DATABASE_URL."""

    await close_db()
    await asyncio.sleep(0)
