"""Middleware registration."""

from fastapi import FastAPI

from huntboard.config import Settings
from huntboard.middleware.cors import setup_cors
from huntboard.middleware.error_handler import setup_error_handlers
from huntboard.middleware.logging import setup_logging
from huntboard.middleware.rate_limit import RateLimitMiddleware
from huntboard.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    wrap every response, 429s included.
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
