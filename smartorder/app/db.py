"""Engine and session helpers for the SQL document store."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .models import Base
from .obs import add_query_logger


def get_engine(url: str) -> AsyncEngine:
    """Create an :class:`AsyncEngine` for ``url`` with query timing logs."""

    engine = create_async_engine(url)
    add_query_logger(engine, "documents")
    return engine


def create_test_engine() -> AsyncEngine:
    """Return an in-memory SQLite engine shared across connections.

    The static pool keeps a single connection alive so every session sees
    the same data.
    """

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    add_query_logger(engine, "test")
    return engine


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the ``documents`` table if missing (tests and local runs)."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["get_engine", "create_test_engine", "session_factory", "create_schema"]
