"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from realmquest.config import get_settings
from realmquest.database import close_db, init_db
from realmquest.gamification.router import router as progression_router
from realmquest.health.router import router as health_router
from realmquest.middleware import setup_middleware
from realmquest.realms.router import router as realms_router
from realmquest.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)

    # Redis only carries rate limits and event broadcast; the API runs without it
    try:
        await init_redis(settings)
    except Exception:
        logger.warning("redis_init_failed", redis_url=settings.redis_url, exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Realm Quest API",
        description="Progression service for Realm Quest: XP, levels, streaks, badges and daily quests",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(realms_router)
    app.include_router(progression_router)

    return app


app = create_app()
