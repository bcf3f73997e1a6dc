"""
Database session management for Tourney.

Provides the SQLAlchemy async engine and session factory with connection
pooling configured from config.py. The engine is built lazily, so importing
this module never touches the database.

Usage:
    # As a context manager (recommended for scripts)
    from tourney.db import get_session

    async with get_session() as session:
        tournaments = await TournamentRepository(session).list_all()
        # Commits automatically on exit, rolls back on exception

    # Services take the factory and open their own transactions
    from tourney.db import get_sessionmaker

    service = TournamentService(get_sessionmaker(), ...)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tourney.config import settings
from tourney.db.models import Base


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    The engine is configured with:
    - Connection pool for efficient reuse (server databases only)
    - Echo mode disabled (set LOG_LEVEL=DEBUG for SQL logging)
    - Pre-ping to verify connections before use (handles stale connections)
    - Foreign key enforcement switched on for SQLite
    """
    url = make_url(database_url or settings.database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    kwargs = {
        "pool_pre_ping": True,
        "echo": settings.log_level == "DEBUG",
    }
    if not is_sqlite:
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow

    engine = create_async_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            """SQLite ships with foreign keys off; cascades rely on them."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to an engine.

    expire_on_commit is off: snapshots are built from the aggregate right
    around commit, and an expired attribute would need a lazy load, which
    async sessions cannot do implicitly.
    """
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine instance."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get or create the process-wide session factory."""
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = create_sessionmaker(get_engine())
    return _sessionmaker


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Automatically commits on successful exit, rolls back on exception.

    Example:
        async with get_session() as session:
            tournament = await session.get(Tournament, 42)
            tournament.name = "Spring Open"
            # Commits automatically when exiting the block

    Raises:
        Any exception from the database operation (after rollback)
    """
    session = get_sessionmaker()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables directly from the models.

    Meant for development and tests; deployed databases are migrated with
    Alembic instead.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
