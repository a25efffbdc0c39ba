"""
FastAPI application for the Hestia identity service.

This is the HTTP API that frontends and the recipe services talk to.
`create_app()` builds an app around an AuthContainer; the module-level
`app` uses the default container for `uvicorn hestia.api.app:app`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hestia.auth import admin, routes
from hestia.auth.policies import PUBLIC, RouteTable
from hestia.config_loader import seed_roles
from hestia.container import AuthContainer
from hestia.core.errors import AuthError, DependencyUnavailable
from hestia.integrations.sentry import capture_exception, init_sentry

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"


# =============================================================================
# Error handling
# =============================================================================


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError as {"error": kind, "message": generic message}."""
    headers: dict[str, str] = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, DependencyUnavailable) or exc.status_code == 503:
        headers["Retry-After"] = RETRY_AFTER_SECONDS
        logger.error("Dependency failure on %s %s: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.public_message},
        headers=headers,
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    capture_exception(exc, path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


# =============================================================================
# App Setup
# =============================================================================


def create_app(container: AuthContainer | None = None) -> FastAPI:
    """
    Build the API around a container.

    Roles are seeded in the lifespan; clients that skip the lifespan
    (httpx ASGITransport in tests) seed through the container instead.
    """
    container = container or AuthContainer()
    settings = container.settings

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.validate_for_production()
        if init_sentry(settings):
            logger.info("Sentry error tracking enabled")
        await seed_roles(container.roles)
        logger.info("Hestia API starting in %s mode", settings.environment)

        yield

        logger.info("Hestia API shutting down")

    app = FastAPI(
        title="Hestia Identity API",
        description="Authentication and tenant-scoped authorization for Hestia",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    route_table = RouteTable()
    for secured in (routes.secured, admin.secured):
        app.include_router(secured.router)
        route_table.merge(secured.rules)
    route_table.register("GET", "/health", PUBLIC)

    app.state.container = container
    app.state.route_table = route_table

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "hestia-identity"}

    return app


app = create_app()
