from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from agent_queue.core.config import get_settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the process-wide async engine on first use."""
    settings = get_settings()
    return create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> async_sessionmaker:
    """Return a session factory bound to the shared engine."""
    return async_sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


async def dispose_engine() -> None:
    """Close pooled database connections."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
        get_session_factory.cache_clear()
        get_engine.cache_clear()
