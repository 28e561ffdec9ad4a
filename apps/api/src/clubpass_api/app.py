from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from loguru import logger

from clubpass_api.core.settings import settings
from clubpass_api.db.base import Base
from clubpass_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.nfc import TTLCache


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One cache per engine per process; request-scoped engines share them.
    app.state.rule_cache = TTLCache(timedelta(seconds=settings.country_rule_cache_ttl_seconds))
    app.state.offer_cache = TTLCache(timedelta(seconds=settings.offer_cache_ttl_seconds))
    logger.info(
        "NFC engine caches ready",
        rule_cache_ttl_seconds=settings.country_rule_cache_ttl_seconds,
        offer_cache_ttl_seconds=settings.offer_cache_ttl_seconds,
    )

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")

    try:
        yield
    finally:
        app.state.rule_cache.invalidate()
        app.state.offer_cache.invalidate()
        await engine.dispose()


def create_app() -> FastAPI:
    """Application factory for the ClubPass FastAPI service."""
    configure_logging(
        service_name="clubpass-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="ClubPass API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="clubpass-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
