"""
Database session management for SQLAlchemy with async support

One manager per AppContext; the hosting process owns init() and close().
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def to_async_url(database_url: str) -> str:
    """Swap sync driver prefixes for their async counterparts"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


class DatabaseSessionManager:
    """Manage database connections and sessions"""

    def __init__(self):
        self._engine = None
        self._sessionmaker = None
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        """Check if session manager is initialized"""
        return self._sessionmaker is not None

    @property
    def engine(self):
        if self._engine is None:
            raise RuntimeError("DatabaseSessionManager not initialized")
        return self._engine

    async def init(self, database_url: str, **engine_kwargs):
        """Initialize database engine and session maker"""
        if self.initialized:
            return

        async with self._init_lock:  # Double-checked locking
            if self.initialized:
                return

            database_url = to_async_url(database_url)

            default_kwargs = {
                "echo": engine_kwargs.get("echo", False),
                "pool_pre_ping": True,
            }
            # Pool sizing only applies to the Postgres queue pool
            if database_url.startswith("postgresql"):
                default_kwargs.update({
                    "pool_size": 20,
                    "max_overflow": 10,
                    "pool_recycle": 3600,
                })
            default_kwargs.update(engine_kwargs)

            self._engine = create_async_engine(database_url, **default_kwargs)

            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )

    def conflict_insert(self, model):
        """INSERT supporting ON CONFLICT DO NOTHING for the bound dialect"""
        if self.engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    @asynccontextmanager
    async def scoped(self, session: Optional[AsyncSession] = None) -> AsyncGenerator[AsyncSession, None]:
        """Join the caller's transaction when given one, else open a new session"""
        if session is not None:
            yield session
            return
        async with self.session() as own:
            yield own

    async def create_all(self):
        """Create tables from ORM metadata (tests and local dev; prod uses Alembic)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for database sessions"""
        if not self.initialized:
            raise RuntimeError("DatabaseSessionManager not initialized")

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
