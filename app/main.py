"""
FastAPI application for the Identity Server access API.

Usage:
    uvicorn app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.access.errors import register_error_handlers
from app.access.factory import get_access_service
from app.access.routes import routers
from app.access.service import AccessService
from identity_core.auth.middleware import AuthMiddleware
from identity_core.config import settings
from identity_core.infrastructure.rate_limiter import _rate_limit_exceeded_handler, limiter
from identity_core.infrastructure.telemetry import TelemetryService, setup_telemetry
from identity_core.logging import setup_logging

VERSION = "0.1.0"


def create_app() -> FastAPI:
    """Build the application.

    The access service is looked up through ``app.dependency_overrides``
    so tests can swap in their own store and sinks.
    """
    setup_logging()
    setup_telemetry()

    def current_service() -> AccessService:
        return app.dependency_overrides.get(get_access_service, get_access_service)()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        dispatcher = current_service().dispatcher
        await dispatcher.start()
        logger.info(f"{settings.SERVICE_NAME} started")
        try:
            yield
        finally:
            await dispatcher.stop()
            logger.info(f"{settings.SERVICE_NAME} stopped")

    app = FastAPI(
        title="LoRaWAN Identity Server",
        description="Rights, API keys and collaborators for applications, gateways, organizations and users",
        version=VERSION,
        lifespan=lifespan,
    )

    TelemetryService().instrument_app(app)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(AuthMiddleware, resolver_provider=lambda: current_service().resolver)

    register_error_handlers(app)
    for router in routers:
        app.include_router(router)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": settings.SERVICE_NAME, "version": VERSION}

    return app


app = create_app()
