"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from huntboard.activities.router import router as activities_router
from huntboard.admin.router import router as admin_router
from huntboard.config import get_settings
from huntboard.database import close_db, get_session_factory, init_db
from huntboard.health.router import router as health_router
from huntboard.leaderboard.aggregator import aggregator
from huntboard.leaderboard.router import router as leaderboard_router
from huntboard.middleware import setup_middleware
from huntboard.profiles.router import router as profiles_router
from huntboard.realtime.bridge import RealtimeBridge
from huntboard.realtime.manager import manager
from huntboard.realtime.router import router as realtime_router
from huntboard.realtime.state import live_state
from huntboard.redis_client import close_redis, get_redis_or_none, init_redis
from huntboard.sessions.router import router as sessions_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    manager.max_connections_per_user = settings.ws_max_connections_per_user
    live_state.feed_limit = settings.activity_feed_limit

    # Seed the local view and first rankings (tables may not exist yet)
    try:
        async with get_session_factory()() as db:
            await live_state.load(db)
    except SQLAlchemyError:
        logger.warning("live_state_seed_failed", exc_info=True)
    await aggregator.refresh()

    # Start the Redis pub/sub -> WebSocket bridge
    bridge: RealtimeBridge | None = None
    bridge_task: asyncio.Task[None] | None = None
    redis = get_redis_or_none()
    if redis is not None:
        try:
            await redis.ping()
        except (RedisError, OSError):
            logger.warning("realtime_unavailable", redis_url=settings.redis_url)
        else:
            bridge = RealtimeBridge(redis)
            bridge_task = asyncio.create_task(bridge.start())

    yield

    if bridge is not None and bridge_task is not None:
        await bridge.stop()
        bridge_task.cancel()
        try:
            await bridge_task
        except asyncio.CancelledError:
            pass

    await aggregator.close()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="huntboard API",
        description="Live team dashboard for timed hunting and research sessions, findings and rankings",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(profiles_router)
    app.include_router(sessions_router)
    app.include_router(activities_router)
    app.include_router(leaderboard_router)
    app.include_router(admin_router)
    app.include_router(realtime_router)

    return app


app = create_app()
