"""
Database configuration and session management for the authentication core.

Accounts, profiles, sessions and one-time codes live in one relational store
reached through the SQLAlchemy asyncio extension. Each repository call opens
its own short `session_scope`.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker,
                                    create_async_engine)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from audit_auth.config import settings

logger = logging.getLogger(__name__)

# Declarative base shared by every mapped table
Base = declarative_base()


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Profiles, sessions and codes reference accounts; SQLite checks that only on request."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Async engine plus session factory for one database URL."""

    def __init__(self, db_url: Optional[str] = None, echo: Optional[bool] = None):
        """
        Args:
            db_url: Async database URL. If None, uses the URL from settings.
            echo: Whether to log SQL statements. If None, uses settings.
        """
        if db_url is None:
            db_url = settings.DATABASE_URL
        if echo is None:
            echo = settings.DATABASE_ECHO

        engine_kwargs = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in db_url:
                # Every connection must see the same in-memory database
                engine_kwargs["poolclass"] = StaticPool

        self.url = db_url
        self.engine = create_async_engine(db_url, echo=echo, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragma)

        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create the accounts, profiles, sessions and otps tables when missing."""
        # Register the mapped classes on Base.metadata
        import audit_auth.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        """Drop every table of the authentication schema."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()

    def get_session(self) -> AsyncSession:
        """Unmanaged session; the caller commits and closes it."""
        return self.SessionLocal()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Transaction scope: commit on success, roll back on any error, always close.

        Yields:
            An active SQLAlchemy async session.
        """
        session = self.get_session()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Module default, replaced by init_db
db = Database()


# PUBLIC_INTERFACE
async def init_db(db_url: Optional[str] = None) -> Database:
    """
    Open the database at `db_url` and create the authentication tables.

    Args:
        db_url: Optional database URL. If None, uses the URL from settings.

    Returns:
        The initialized Database, which also becomes the module default.
    """
    global db
    db = Database(db_url)
    await db.create_all()
    logger.info("Database initialized")
    return db


# PUBLIC_INTERFACE
def get_database() -> Database:
    """
    Get the current default database.

    Returns:
        The module level Database instance.
    """
    return db
