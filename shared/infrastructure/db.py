"""
Database configuration and session management.
Uses SQLAlchemy 2.0 asyncio extension: every store call is awaited.
"""

import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config.settings import DATABASE_URL, settings


def _calculate_pool_size() -> int:
    """
    Calculate pool size based on CPU cores.
    Formula: (2 * CPU cores) + 1, capped at 20.
    """
    cores = os.cpu_count() or 4
    return min(cores * 2 + 1, 20)


def to_async_url(url: str) -> str:
    """
    Convert a sync database URL to its async driver form.

    psycopg 3 serves both modes under ``postgresql+psycopg``; sqlite needs
    the aiosqlite driver.
    """
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def create_engine_for(url: str) -> AsyncEngine:
    """Create an async engine with pool settings suitable for the backend."""
    async_url = to_async_url(url)
    if async_url.startswith("sqlite"):
        return create_async_engine(async_url, echo=settings.database_echo)

    return create_async_engine(
        async_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=_calculate_pool_size(),
        max_overflow=15,
        pool_timeout=30,  # Wait max 30s for connection from pool
        pool_recycle=1800,  # Recycle connections after 30 minutes
        connect_args={"connect_timeout": 10},
        echo=settings.database_echo,
    )


engine = create_engine_for(DATABASE_URL)

# Session factory. Objects stay usable after commit: lazy refreshes are not
# possible on an async session.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.post("/orders/{order_id}/status")
        async def change_status(db: AsyncSession = Depends(get_db)):
            ...

    The session is automatically closed after the request completes.
    """
    async with AsyncSessionLocal() as db:
        yield db
