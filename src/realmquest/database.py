"""Async SQLAlchemy engine and session management."""

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError

from realmquest.gamification.errors import ConflictError

logger = structlog.get_logger()

T = TypeVar("T")

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(url: str) -> None:
    """Initialize the database engine and session factory."""
    global _engine, _session_factory  # noqa: PLW0603
    if url.startswith("sqlite"):
        # SQLite (tests, local tooling) has no connection pool sizing
        _engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})
    else:
        _engine = create_async_engine(
            url,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Get the async engine instance."""
    if _engine is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory (for code that opens its own sessions)."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block as one transaction: commit on success, roll back on any failure.

    Cancellation (``asyncio.CancelledError``) is a ``BaseException`` and also
    rolls back, so an aborted request never leaves partial writes behind.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    retries: int = 1,
    operation: str = "transaction",
) -> T:
    """Run ``work`` inside :func:`atomic`, retrying on optimistic-lock conflicts.

    ``work`` must (re)load every row it touches, since a retry starts from a
    rolled-back session.
    """
    attempt = 1
    while True:
        try:
            async with atomic(db):
                return await work()
        except StaleDataError as exc:
            if attempt >= retries:
                logger.warning("transaction_conflict_exhausted", operation=operation, attempts=attempt)
                msg = "Concurrent update detected, please retry"
                raise ConflictError(msg) from exc
            logger.info("transaction_conflict_retry", operation=operation, attempt=attempt)
            attempt += 1
