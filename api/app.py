"""
FastAPI host application.

Owns the service container and the scheduler lifecycle; domain errors map to
HTTP status codes in one place.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.config import Settings, get_settings
from core.errors import (
    ConflictError,
    DhanSetuError,
    ExternalServiceError,
    NotFoundError,
    UnsupportedChainError,
    ValidationError,
)
from core.logging import configure_logging

from .chains_api import router as chains_router
from .container import GatewayServices, build_services
from .payments_api import router as payments_router
from .subscriptions_api import router as subscriptions_router
from .wallets_api import router as wallets_router

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 400,
    UnsupportedChainError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    ExternalServiceError: 502,
}


def status_for(error: DhanSetuError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[GatewayServices] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        app.state.services = services or build_services(settings)
        if start_scheduler:
            app.state.services.scheduler.start()
        logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
        try:
            yield
        finally:
            await app.state.services.aclose()
            logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    @app.exception_handler(DhanSetuError)
    async def handle_domain_error(request: Request, exc: DhanSetuError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health(request: Request):
        services: GatewayServices = request.app.state.services
        return {
            "status": "ok",
            "chains": services.registry.supported_chains(),
            "scheduler_running": services.scheduler.running,
            "jobs": [job.to_dict() for job in services.scheduler.jobs],
        }

    app.include_router(payments_router, prefix="/api")
    app.include_router(subscriptions_router, prefix="/api")
    app.include_router(chains_router, prefix="/api")
    app.include_router(wallets_router, prefix="/api")
    return app
