"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration
for the local document store.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations. The
engine is owned by a ``Database`` object created once at startup and
passed to repositories, never held in module globals.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Prevent lazy loading after commit
            autoflush=False,
        )

    @classmethod
    def from_url(
        cls,
        database_url: str,
        echo: bool = False,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
    ) -> "Database":
        """
        Create the engine for ``database_url``.

        Pool sizing only applies to pooled drivers; SQLite URLs ignore it.
        """
        # asyncpg expects ssl= rather than libpq's sslmode=
        database_url = database_url.replace("sslmode=", "ssl=")

        kwargs: dict = {"echo": echo, "pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            if pool_size is not None:
                kwargs["pool_size"] = pool_size
            if max_overflow is not None:
                kwargs["max_overflow"] = max_overflow

        return cls(create_async_engine(database_url, **kwargs))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session that commits on success and rolls back on error.

        Usage:
            async with database.session() as session:
                result = await session.execute(select(TicketDocumentModel))
        """
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """
        Create all database tables.

        Used for development and tests; production uses migrations.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await self.engine.dispose()


__all__ = ["Base", "Database"]
