"""FastAPI application factory and entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from analytics_import.api.v1.router import api_router
from analytics_import.core.config import settings
from analytics_import.core.exceptions import register_exception_handlers
from analytics_import.core.logging import configure_logging
from analytics_import.core.middleware import LoggingMiddleware
from analytics_import.core.redis import close_redis, get_redis, init_redis
from analytics_import.db.session import AsyncSessionLocal, close_db, init_db
from analytics_import.services import build_sql_services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    configure_logging(settings.log_level, settings.log_format)
    logger.info("app_starting", app=settings.app_name, env=settings.app_env)

    await init_db()

    redis_client = None
    if settings.use_redis_rate_limiter:
        try:
            redis_client = await init_redis()
        except (RedisError, OSError) as e:
            logger.warning("redis_unavailable", error=str(e), fallback="in-memory rate limiter")

    services = build_sql_services(settings, AsyncSessionLocal, redis_client)
    app.state.services = services

    await services.orchestrator.recover_interrupted()
    services.orchestrator.start_scheduler()

    yield

    # Shutdown
    logger.info("app_stopping", app=settings.app_name)
    await services.close()
    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.app_name,
        description="Historical analytics import API - Google Analytics import jobs",
        version="1.0.0",
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add logging middleware
    app.add_middleware(LoggingMiddleware)

    # Register exception handlers
    register_exception_handlers(app)

    # Include API router
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    # Health check endpoint (no prefix)
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        try:
            client = await get_redis()
            await client.ping()
            redis_status = "connected"
        except (RuntimeError, RedisError, OSError):
            redis_status = "unavailable"

        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": "1.0.0",
            "redis": redis_status,
        }

    return app


# Create app instance
app = create_app()


def run():
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "analytics_import.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    run()
