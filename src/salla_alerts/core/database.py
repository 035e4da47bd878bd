"""Database module."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import anyio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("database")


class Base(DeclarativeBase):
    pass


class Database:
    """
    Process-wide database handle.

    The engine is created on first use. ``ensure_connected`` is idempotent: once a
    connection check succeeded the same engine is reused, and a failed attempt leaves
    the handle unconnected so the next caller tries again.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self._lock = anyio.Lock()

    @property
    def connected(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> AsyncEngine:
        if self.url.startswith("sqlite") and ":memory:" in self.url:
            # Every session must see the same in-memory database
            return create_async_engine(
                self.url,
                echo=self.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(self.url, echo=self.echo, pool_pre_ping=True)

    async def ensure_connected(self) -> AsyncEngine:
        """
        Connect to the database if not connected yet.

        Returns:
            AsyncEngine: The shared engine.

        Raises:
            Exception: Whatever the driver raised while connecting.
        """
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is not None:
                return self._engine

            engine = self._create_engine()
            try:
                async with engine.connect() as conn:
                    result = await conn.execute(text("SELECT 1"))
                    logger.info("Database connection successful: %s", result.scalar())
            except Exception as e:
                logger.error("Database connection failed: %s: %s", type(e).__name__, e)
                await engine.dispose()
                raise

            self._engine = engine
            self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
            return engine

    async def create_tables(self) -> None:
        """Create all tables known to the declarative base."""
        # Register the mapped classes on Base.metadata
        from salla_alerts.core import models  # noqa: F401

        engine = await self.ensure_connected()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session on the shared engine."""
        await self.ensure_connected()
        sessionmaker = self._sessionmaker
        if sessionmaker is None:
            raise RuntimeError("Database was disposed while opening a session")
        async with sessionmaker() as session:
            yield session

    async def dispose(self) -> None:
        """Release pooled connections. The handle can connect again afterwards."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
