"""
Database Connection and Session Management

This module handles database connectivity using SQLAlchemy's async engine
(asyncpg for PostgreSQL, aiosqlite for local runs and tests). The engine is
owned by a `Database` instance created at application startup and disposed at
shutdown; nothing is connected at import time.
"""
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

logger = logging.getLogger(__name__)

# Base class for ORM models
Base = declarative_base()


class Database:
    """
    Async engine and session factory with an explicit lifecycle.

    Call `connect()` before handing out sessions and `close()` on shutdown.
    """

    def __init__(self, url: str, pool_size: int = 5, max_overflow: int = 10, echo: bool = False):
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _engine_options(self) -> dict:
        options = {
            "echo": self.echo,  # Set to True for SQL debugging
            "pool_pre_ping": True,  # Enable connection health checks
        }
        # SQLite pools do not take sizing arguments
        if not self.url.startswith("sqlite"):
            options["pool_size"] = self.pool_size
            options["max_overflow"] = self.max_overflow
        return options

    async def connect(self) -> None:
        """Create the engine, verify connectivity and create the schema if missing."""
        # Registers the ORM tables on Base.metadata
        from faceauth import models  # noqa: F401

        if self._engine is not None:
            return

        engine = create_async_engine(self.url, **self._engine_options())
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            await engine.dispose()
            logger.error(f"Failed to connect to database: {e}")
            raise

        self._engine = engine
        self._session_maker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database connection established successfully")

    def session(self) -> AsyncSession:
        """Open a new session. Fails if `connect()` has not run."""
        if self._session_maker is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._session_maker()

    async def close(self) -> None:
        """Close database connection pool."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_maker = None
        logger.info("Database connection pool closed")
