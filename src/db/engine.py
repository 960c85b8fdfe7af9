"""
Async SQLAlchemy engine for the PostgreSQL story store.

The engine is optional: without DATABASE_URL the app keeps stories in
memory and ``get_session_factory()`` returns None.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine,
)

logger = logging.getLogger(__name__)

_ASYNC_DRIVER = "postgresql+asyncpg://"
_SYNC_PREFIXES = ("postgres://", "postgresql://")

_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalize_database_url(database_url: str) -> str:
    """Rewrite plain postgres URLs to use the asyncpg driver."""
    for prefix in _SYNC_PREFIXES:
        if database_url.startswith(prefix):
            return _ASYNC_DRIVER + database_url[len(prefix):]
    return database_url


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class DatabaseConfig:
    """Connection pool settings, read from the environment."""

    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_size: int = field(default_factory=lambda: _env_int("DB_POOL_SIZE", 5))
    max_overflow: int = field(default_factory=lambda: _env_int("DB_MAX_OVERFLOW", 10))
    pool_recycle: int = field(default_factory=lambda: _env_int("DB_POOL_RECYCLE", 300))
    echo: bool = field(default_factory=lambda: os.getenv("DB_ECHO", "").lower() == "true")

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def engine_kwargs(self) -> dict:
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


async def init_db(config: Optional[DatabaseConfig] = None) -> None:
    """Create the engine and session factory once at startup."""
    global _engine, _async_session_factory

    config = config or DatabaseConfig()
    if not config.configured:
        logger.warning("DATABASE_URL not set, stories are kept in memory")
        return

    _engine = create_async_engine(normalize_database_url(config.url), **config.engine_kwargs())
    _async_session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(f"Story database ready (pool_size={config.pool_size}, max_overflow={config.max_overflow})")


async def close_db() -> None:
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Story database closed")
    _engine = None
    _async_session_factory = None


def get_session_factory() -> Optional[async_sessionmaker[AsyncSession]]:
    return _async_session_factory
