# backend/app/db/session.py
"""
Async database session management for SQLAlchemy.

Production considerations:
- Uses asyncpg for PostgreSQL (hosted production database)
- Uses aiosqlite for SQLite (local development and tests)
- Connection pooling configured for production workloads
- Pool settings differ for SQLite (no pooling) vs PostgreSQL

Single-use invariants (challenges, recovery codes, recovery tokens) are
enforced by conditional UPDATEs in the services, so the engine needs no
special isolation level beyond the database default.
"""
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from backend.app.core.config import settings


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create and configure an async SQLAlchemy engine.

    SQLite (local development, tests):
    - NullPool so every session gets its own connection and its own
      transaction
    - transactions start with BEGIN IMMEDIATE, so competing writers queue
      on the busy timeout instead of failing on lock upgrade
    - check_same_thread=False for async compatibility

    PostgreSQL (production):
    - pool_size=5, max_overflow=10
    - pool_pre_ping=True: validate connections before use
    - pool_recycle=300: hosted databases close idle connections
    """
    if "sqlite" in url.lower():
        sqlite_engine = create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": 15},
        )

        @event.listens_for(sqlite_engine.sync_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(sqlite_engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return sqlite_engine

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    expire_on_commit=False: model attributes stay readable after commit
    autoflush=False: explicit flush control, no surprise queries
    """
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Global async engine instance
# Created once at module load, reused across all requests
# ─────────────────────────────────────────────────────────────────────────────
engine: AsyncEngine = create_engine_for_url(settings.DATABASE_URL, settings.DATABASE_ECHO)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Usage in FastAPI endpoints:
        @router.post("/register/verify")
        async def verify(db: AsyncSession = Depends(get_db)):
            ...

    This does NOT auto-commit. Services commit explicitly at the points
    where a write must become durable (challenge consumption, credential
    binding).
    """
    async with AsyncSessionLocal() as session:
        yield session
