"""Database utilities for the Availarr service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        engine_kwargs: dict[str, Any] = {"future": True}
        if database_url.startswith("sqlite"):
            # Scanners write concurrently for unrelated titles; wait on the
            # SQLite write lock instead of failing immediately.
            engine_kwargs["connect_args"] = {"timeout": 30}
        self._engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Imported for its side effect of registering the mapped tables.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()
        if "media" not in table_names:
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("media")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "imdb_id",
            "ALTER TABLE media ADD COLUMN imdb_id VARCHAR(32)",
        )
        _ensure_column(
            "title",
            "ALTER TABLE media ADD COLUMN title VARCHAR(255)",
        )
        _ensure_column(
            "external_service_slug_4k",
            "ALTER TABLE media ADD COLUMN external_service_slug_4k VARCHAR(255)",
        )
        _ensure_column(
            "last_season_change",
            "ALTER TABLE media ADD COLUMN last_season_change DATETIME",
            (
                "UPDATE media SET last_season_change = CURRENT_TIMESTAMP "
                "WHERE last_season_change IS NULL"
            ),
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
