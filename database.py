"""
Database Configuration and Session Management
============================================

Async engine, session factory and table creation for the SQL ledger store.
The engine is built from an explicit URL so tests and the app factory
can each own their own database.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from models import Base

logger = logging.getLogger(__name__)


def async_database_url(database_url: str) -> str:
    """Map a plain database URL onto its async driver"""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg uses 'ssl' instead of 'sslmode' parameter
        database_url = database_url.replace("sslmode=require", "ssl=require")
        database_url = database_url.replace("sslmode=prefer", "ssl=prefer")
        database_url = database_url.replace("sslmode=disable", "ssl=disable")
    elif database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine suited to the backend named by the URL"""
    url = async_database_url(database_url)

    if url.startswith("sqlite"):
        kwargs = {}
        if ":memory:" in url or url.rstrip("/").endswith("aiosqlite:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(url, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@asynccontextmanager
async def managed_session(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """Session that commits on success, rolls back on error and always closes"""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables(engine: AsyncEngine) -> None:
    """Create all ledger tables that do not exist yet"""
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info(f"✅ DATABASE: ledger tables ready on {engine.url.render_as_string(hide_password=True)}")
