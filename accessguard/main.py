"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from accessguard.api.middleware.logging import LoggingMiddleware
from accessguard.api.middleware.request_id import RequestIdMiddleware
from accessguard.api.routes import router as api_router
from accessguard.core.auth.backends import DatabasePolicyStore
from accessguard.core.auth.dependencies import get_memory_store, get_role_catalog
from accessguard.core.auth.hierarchy import HierarchyGuard
from accessguard.core.config import settings
from accessguard.core.logging import configure_logging
from accessguard.models.database import async_session_factory, close_db, init_db
from accessguard.services.rbac import RBACService

logger = structlog.get_logger()


async def seed_default_permissions() -> int:
    """Create the default permission rows in the configured store."""
    catalog = get_role_catalog()

    if settings.rbac.store_backend == "memory":
        store = get_memory_store()
        service = RBACService(store, HierarchyGuard(store, catalog), catalog)
        return len(await service.initialize_default_permissions())

    async with async_session_factory() as session:
        store = DatabasePolicyStore(session)
        service = RBACService(store, HierarchyGuard(store, catalog), catalog)
        created = await service.initialize_default_permissions()
        await session.commit()
        return len(created)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    configure_logging(settings)

    # Fails startup with ConfigurationError on an invalid catalog
    catalog = get_role_catalog()
    logger.info(
        "Role catalog loaded",
        roles=len(catalog),
        resources=sorted(catalog.resources),
        store_backend=settings.rbac.store_backend,
        audit_backend=settings.rbac.audit_backend,
    )

    if settings.database.create_tables and settings.rbac.store_backend == "database":
        await init_db()
        logger.info("Database tables created")

    if settings.rbac.seed_permissions_on_startup:
        count = await seed_default_permissions()
        logger.info("Seeded default permissions", count=count)

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Middleware (order matters - last added is outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": str(exc) if settings.debug else "An error occurred",
            },
        )

    @app.get("/health")
    async def health_check():
        """Quick health check endpoint (for load balancers)."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/health/detailed")
    async def health_check_detailed():
        """Health check including the policy store database."""
        components = {"catalog": "healthy"}

        if settings.rbac.store_backend == "database":
            try:
                async with async_session_factory() as session:
                    await session.execute(text("SELECT 1"))
                components["database"] = "healthy"
            except (SQLAlchemyError, OSError):
                logger.warning("Database health check failed", exc_info=True)
                components["database"] = "unhealthy"

        healthy = all(value == "healthy" for value in components.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "version": settings.app_version,
                "components": components,
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "accessguard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )
