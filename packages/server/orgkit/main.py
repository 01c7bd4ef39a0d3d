"""
OrgKit API Server

Entry point for the FastAPI application.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from orgkit.api.v1 import router as api_v1_router
from orgkit.api.v1.responses import internal_error_response
from orgkit.core.config import Settings, get_settings, load_toolkit_options
from orgkit.core.database import init_db
from orgkit.core.logging import configure_logging
from orgkit.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware, get_request_id
from orgkit.repositories.factory import build_unit_of_work
from orgkit.repositories.sql_adapter import SqlUnitOfWork
from orgkit.services.hooks import ToolkitOptions
from orgkit.services.registry import UseCases, build_use_cases

log = structlog.get_logger()


def build_default_use_cases(settings: Settings) -> UseCases:
    options = ToolkitOptions()
    if settings.toolkit_options_path:
        options = ToolkitOptions.from_config(load_toolkit_options(settings.toolkit_options_path))
    return build_use_cases(build_unit_of_work(settings), options)


def create_app(use_cases: Optional[UseCases] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    app = FastAPI(
        title="OrgKit",
        description="Users, organizations and memberships for multi-tenant applications.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.use_cases = use_cases or build_default_use_cases(settings)

    # Middleware (order matters - last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Location"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        request_id = get_request_id(request)
        log.exception("api.unhandled_error", path=request.url.path, request_id=request_id)
        return internal_error_response(request_id)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        await app.state.use_cases.get_user.uow.repositories().organizations.count()
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        uow = app.state.use_cases.get_user.uow
        if isinstance(uow, SqlUnitOfWork) and settings.debug:
            # Production schemas come from Alembic.
            await init_db(uow.engine)
        log.info("orgkit.starting", persistence=settings.persistence)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("orgkit.shutting_down")
        uow = app.state.use_cases.get_user.uow
        if isinstance(uow, SqlUnitOfWork):
            await uow.engine.dispose()

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("orgkit.main:create_app", factory=True, host=settings.host, port=settings.port)
