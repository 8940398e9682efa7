from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from typing import Any, AsyncGenerator, Dict, Optional

from app.core.config import settings
from app.services.cache_service import CacheService, cache_service

Base = declarative_base()

# Created on first use so importing models never opens a connection
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """DATABASE_URL with the async driver filled in for PostgreSQL"""
    url = settings.DATABASE_URL
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def _engine_options(url: str) -> Dict[str, Any]:
    """
    SQLite (local runs, tests) and non-production PostgreSQL get NullPool;
    production PostgreSQL gets a pre-pinged, recycled QueuePool.
    """
    options: Dict[str, Any] = {"echo": settings.DB_ECHO}
    if url.startswith("sqlite"):
        options.update(poolclass=NullPool, connect_args={"check_same_thread": False})
    elif settings.is_dev_mode():
        options.update(poolclass=NullPool)
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,
            pool_pre_ping=True,
        )
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = get_database_url()
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


def get_session_local() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def commit_session(session: AsyncSession, cache: CacheService = cache_service) -> None:
    """Commit, then drop the cache entries the transaction's mutations queued"""
    await session.commit()
    await cache.invalidate_committed(session)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Services only flush; the request commits here
    once the endpoint returns, and any exception rolls everything back.
    """
    async with get_session_local()() as session:
        try:
            yield session
            await commit_session(session)
        except Exception:
            await session.rollback()
            cache_service.discard_pending(session)
            raise


async def init_db() -> None:
    """Create the supervision tables (and their partial unique indexes)"""
    import app.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
