import asyncio
from collections.abc import AsyncGenerator, Awaitable
from typing import TypeVar

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings
from src.cu_common.errors import StoreTimeoutError

T = TypeVar("T")


class Base(DeclarativeBase):
    """Shared declarative base for the few fixed-shape ORM models."""

    pass


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=20,
    max_overflow=10,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an AsyncSession, auto-closes after request."""
    async with async_session_factory() as session:
        yield session


async def bounded(
    awaitable: Awaitable[T],
    operation: str,
    timeout_seconds: float | None = None,
) -> T:
    """Await a store call with a deadline.

    A timeout is a hard failure (StoreTimeoutError), never "assume success".
    """
    seconds = settings.STORE_CALL_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    if seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise StoreTimeoutError(operation, seconds) from None
