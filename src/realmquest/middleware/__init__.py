"""Middleware registration."""

from fastapi import FastAPI

from realmquest.config import Settings
from realmquest.middleware.cors import setup_cors
from realmquest.middleware.error_handler import setup_error_handlers
from realmquest.middleware.logging import setup_logging
from realmquest.middleware.rate_limit import RateLimitMiddleware
from realmquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware.

    Starlette runs middleware in reverse-add order, so CORS (added last) is
    outermost and also wraps 429 responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
