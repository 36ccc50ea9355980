"""
FastAPI Application Factory
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinicguard import __version__
from clinicguard.api.dependencies import GuardServices, build_services
from clinicguard.api.routes import health_router, router
from clinicguard.config import Settings, get_settings
from clinicguard.context import REQUEST_ID_HEADER, RequestContextMiddleware
from clinicguard.responses import install_exception_handlers
from clinicguard.stores import create_pool

logger = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    guard_services: GuardServices | None = None,
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        settings: application settings, defaults to ``get_settings()``
        guard_services: prebuilt services; when omitted they are built at
            startup from the settings

    Returns:
        Configured app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned_pool = None
        services = guard_services
        if services is None:
            if settings.app.store_backend == "postgres" or settings.audit.sink == "postgres":
                owned_pool = await create_pool(settings)
            services = build_services(settings, pool=owned_pool)
        app.state.services = services

        logger.info(
            "Starting ClinicGuard API",
            env=settings.app.env,
            provider=services.provider.name,
            store_backend=settings.app.store_backend,
            audit_sink=settings.audit.sink,
        )
        await services.provider.initialize()
        await services.audit_logger.start()

        yield

        logger.info("Shutting down ClinicGuard API")
        await services.audit_logger.stop()
        await services.provider.close()
        if owned_pool is not None:
            await owned_pool.close()

    app = FastAPI(
        title="ClinicGuard API",
        description="Authorization guards and PHI-safe audit for multi-clinic healthcare",
        version=__version__,
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestContextMiddleware)

    install_exception_handlers(app)

    app.include_router(health_router, prefix="/health", tags=["health"])
    app.include_router(router, prefix="/api/v1", tags=["guarded"])

    return app
