from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy import MetaData, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from devkit.config import ServiceSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    """Declarative base shared by every persisted table."""


def normalize_postgres_dsn(dsn: str) -> str:
    """Pin plain ``postgresql://`` URLs to the psycopg 3 async driver."""
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    return dsn


def is_transient_db_error(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(getattr(exc, "connection_invalidated", False))
    return False


class AsyncDatabaseManager:
    """Owns one async engine and runs units of work against it.

    The engine is created lazily on first use. ``prepare`` is idempotent and may
    create the tables of a metadata collection once per manager.
    """

    def __init__(
        self,
        dsn: str,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
        pool_recycle_seconds: int = 1800,
    ) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self._dsn = normalize_postgres_dsn(dsn)
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._pool_recycle_seconds = pool_recycle_seconds
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None
        self._prepared_metadata: set[int] = set()
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "AsyncDatabaseManager":
        if not settings.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")
        return cls(settings.DATABASE_URL)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("database manager is not connected")
        return self._engine

    def _open(self) -> None:
        if self._engine is None:
            self._engine = create_async_engine(
                self._dsn,
                pool_pre_ping=True,
                pool_recycle=self._pool_recycle_seconds,
            )
            self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    async def prepare(self, metadata: MetaData | None = None) -> None:
        async with self._lock:
            self._open()
            if metadata is None or id(metadata) in self._prepared_metadata:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
            self._prepared_metadata.add(id(metadata))
            logger.info("db_schema_prepared", extra={"tables": sorted(metadata.tables)})

    async def ping(self) -> bool:
        self._open()
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        async with self._lock:
            if self._engine is not None:
                await self._engine.dispose()
            self._engine = None
            self._sessions = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        self._open()
        assert self._sessions is not None
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def run_in_transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``fn`` inside one transaction; transient failures replay the whole unit."""
        attempt = 0
        while True:
            try:
                async with self.transaction() as session:
                    return await fn(session)
            except Exception as exc:
                attempt += 1
                if attempt >= self._max_retries or not is_transient_db_error(exc):
                    raise
                delay = self._base_delay_seconds * (2 ** (attempt - 1))
                logger.warning("db_transient_retry", extra={"attempt": attempt, "delay_seconds": delay})
                await self.dispose()
                await asyncio.sleep(delay)
