"""Optional Redis pool for rate limiting and progression event broadcast.

The API runs without Redis: ``init_redis`` leaves no pool behind when the
server is unreachable, and callers use :func:`get_redis_or_none`.
"""

import redis.asyncio as redis

from realmquest.config import Settings

_pool: redis.Redis | None = None


async def init_redis(settings: Settings) -> None:
    """Connect and verify with PING; raises (and keeps no pool) if Redis is down."""
    global _pool  # noqa: PLW0603
    client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _pool = client


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client; RuntimeError when running without Redis."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_redis_or_none() -> redis.Redis | None:
    return _pool
