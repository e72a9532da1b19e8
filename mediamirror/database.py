"""Database utilities for the media mirror."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .config import Settings


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    """Let readers proceed while one connection holds the write lock."""

    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str, *, busy_timeout: float = 30.0):
        is_sqlite = database_url.startswith("sqlite")
        connect_args = {"timeout": busy_timeout} if is_sqlite else {}
        self._engine: AsyncEngine = create_async_engine(
            database_url, future=True, connect_args=connect_args
        )
        if is_sqlite:
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_wal)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url, busy_timeout=settings.database_busy_timeout_seconds
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the mapped tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        if "sessions" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("sessions")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        # Sessions recorded before historical imports existed are all native.
        _ensure_column(
            "source",
            "ALTER TABLE sessions ADD COLUMN source VARCHAR(32) DEFAULT 'native'",
            "UPDATE sessions SET source = 'native' WHERE source IS NULL",
        )
        _ensure_column(
            "raw_data",
            "ALTER TABLE sessions ADD COLUMN raw_data JSON",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a session scope around a series of operations."""

        async with self.session_factory() as session:
            yield session

