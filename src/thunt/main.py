"""FastAPI application factory for the treasure hunt engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from thunt.config import Settings, get_settings
from thunt.database import close_db, init_db
from thunt.health.router import router as health_router
from thunt.hunts.router import router as hunts_router
from thunt.middleware import setup_middleware
from thunt.redis_client import close_redis, init_redis

logger = structlog.get_logger()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API app. ``settings`` defaults to the cached environment settings."""
    if settings is None:
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
        await init_redis(settings.redis_url)
        logger.info("thunt_api_started", environment=settings.environment, version=settings.app_version)

        yield

        await close_db()
        await close_redis()
        logger.info("thunt_api_stopped")

    app = FastAPI(
        title="Treasure Hunt Engine",
        description="Participation, ranking and reward engine for marketplace treasure hunts",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(hunts_router)

    return app


app = create_app()
