"""Database connection and session management"""
from typing import Optional

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker

from config import settings

logger = structlog.get_logger()

# Lazy initialization - engine created on first use
_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[sessionmaker] = None


def normalize_database_url(url: str) -> str:
    """Force async drivers (asyncpg / aiosqlite) onto plain URLs"""
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Please configure it in your .env file."
        )

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://") and "+aiosqlite" not in url:
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return url


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    url = normalize_database_url(url)

    if url.startswith("sqlite"):
        # aiosqlite waits on the file lock instead of failing concurrent writers
        return create_async_engine(url, echo=echo, connect_args={"timeout": 15})

    # statement_cache_size=0 is required behind pgbouncer-style poolers
    connect_args = {
        "statement_cache_size": 0,
        "server_settings": {
            "application_name": settings.service_name,
        },
    }
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


def create_session_maker(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy initialization)"""
    global _engine

    if _engine is None:
        _engine = create_engine_for(settings.database_url, echo=settings.debug)

    return _engine


def get_session_maker() -> sessionmaker:
    """Get or create the session maker (lazy initialization)"""
    global _async_session_maker

    if _async_session_maker is None:
        _async_session_maker = create_session_maker(get_engine())

    return _async_session_maker


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize database - create tables if not exist"""
    import asyncio

    # Register tables on the metadata
    from domain.models import Resource, Credential, AuditEvent  # noqa: F401

    engine = engine or get_engine()

    # Retry logic for database connection
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(1, max_retries + 1):
        try:
            logger.info("database_connecting", attempt=attempt, max_retries=max_retries)
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("database_initialized")
            return
        except Exception as e:
            if attempt < max_retries:
                logger.warning("database_connection_failed", attempt=attempt, error=str(e), retry_in=retry_delay)
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error("database_unreachable", attempts=max_retries, error=str(e))
                raise


async def dispose_engine() -> None:
    global _engine, _async_session_maker

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_maker = None

