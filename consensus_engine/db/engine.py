# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy Engine
# FastAPI is an async framework, so we use SQLAlchemy's async engine to avoid
# blocking the event loop during database operations. This means:
# - All DB queries use `await` (e.g., `await session.execute(...)`)
# - We use `asyncpg` as the PostgreSQL driver in production
# - Tests point DATABASE_URL (or an explicit URL) at sqlite+aiosqlite
#
# DESIGN DECISION: Lazy engine creation.
# Importing this module never opens a connection pool, so the API can be
# imported (and its dependencies overridden) without a reachable database.
#
# SESSION LIFECYCLE:
# 1. FastAPI request arrives
# 2. `get_async_session` dependency creates a new session
# 3. Route handler uses session for DB operations
# 4. Session auto-commits on exit and is closed when the request completes
# 5. On exception, the transaction is rolled back
#
# Code running outside a request (start-up index reload, the record store)
# uses `get_session_factory()()` directly and MUST commit explicitly.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from consensus_engine.config import settings

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for `url`.

    Pool sizing only applies to server databases. An in-memory SQLite
    database lives as long as its connection, so it gets a StaticPool.
    """
    if url.startswith("sqlite"):
        if ":memory:" in url:
            return create_async_engine(url, echo=echo, poolclass=StaticPool)
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_size=5, max_overflow=10)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: objects stay readable after commit outside
    # the session (attribute access would otherwise trigger a lazy load).
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the application engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine_for_url(settings.database_url, echo=settings.debug)
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create and cache the application session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = make_session_factory(get_async_engine())
    return _async_session_factory


async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet (no migrations)."""
    from consensus_engine.db.models import Base

    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close the connection pool (application shutdown)."""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is committed when the handler returns and rolled back if it
    raises.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
