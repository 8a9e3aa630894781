"""
Covrily API - FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import Response

from apps.api.routers import connectors, deadlines, decisions, receipts
from packages.common.config import Settings, get_settings
from packages.common.context import AppContext, build_context
from packages.common.exceptions import (
    CredentialConflict,
    DeadlineNotFound,
    DeadlineStateConflict,
    ReauthorizeNeeded,
    UpstreamError,
)
from packages.common.logging_config import configure_logging

logger = structlog.get_logger()

VERSION = "0.1.0"

ContextBuilder = Callable[[Settings], Awaitable[AppContext]]


def create_app(
    settings: Optional[Settings] = None,
    context_builder: ContextBuilder = build_context,
) -> FastAPI:
    """Build the API; the lifespan owns the AppContext"""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager"""
        logger.info("starting_covrily_api",
                    environment=settings.environment,
                    version=VERSION)

        app.state.context = await context_builder(settings)

        yield

        logger.info("shutting_down_covrily_api")
        await app.state.context.close()

    app = FastAPI(
        title="Covrily API",
        description="Return and price-adjustment deadlines, decisions and reminders",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["https://covrily.com"] if settings.environment == "production" else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with structured logging"""
        logger.warning("validation_error",
                       path=request.url.path,
                       errors=exc.errors())
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"ok": False, "detail": jsonable_errors(exc)},
        )

    @app.exception_handler(ReauthorizeNeeded)
    async def reauthorize_needed_handler(request: Request, exc: ReauthorizeNeeded):
        logger.info("reauthorize_needed_response",
                    path=request.url.path,
                    provider=exc.provider)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "ok": False,
                "error": "reauthorize_needed",
                "detail": str(exc),
                "reauthorize": "/api/v1/connectors/google/reauthorize",
            },
        )

    @app.exception_handler(DeadlineNotFound)
    async def deadline_not_found_handler(request: Request, exc: DeadlineNotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"ok": False, "error": "not_found", "detail": str(exc)},
        )

    @app.exception_handler(DeadlineStateConflict)
    async def deadline_conflict_handler(request: Request, exc: DeadlineStateConflict):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"ok": False, "error": "conflict", "detail": str(exc), "status": exc.status},
        )

    @app.exception_handler(CredentialConflict)
    async def credential_conflict_handler(request: Request, exc: CredentialConflict):
        logger.warning("credential_conflict_response",
                       path=request.url.path,
                       provider=exc.provider)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"ok": False, "error": "credential_conflict", "detail": str(exc)},
        )

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        logger.error("upstream_error",
                     path=request.url.path,
                     status_code=exc.status_code,
                     error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"ok": False, "error": "upstream_error", "detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors"""
        logger.error("unhandled_exception",
                     path=request.url.path,
                     error=str(exc),
                     exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "ok": False,
                "detail": "Internal server error",
                "request_id": request.headers.get("x-request-id"),
            },
        )

    # Include routers
    app.include_router(decisions.router, prefix="/api/v1/decisions", tags=["Decisions"])
    app.include_router(deadlines.router, prefix="/api/v1/deadlines", tags=["Deadlines"])
    app.include_router(connectors.router, prefix="/api/v1/connectors", tags=["Connectors"])
    app.include_router(receipts.router, prefix="/api/v1/receipts", tags=["Receipts"])

    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint for Docker and monitoring"""
        try:
            async with request.app.state.context.db.session() as session:
                await session.execute(text("SELECT 1"))

            return {
                "status": "healthy",
                "environment": settings.environment,
                "version": VERSION,
                "services": {"database": "connected"},
            }
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "error": str(e),
                }
            )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.metrics_enabled:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"detail": "Metrics disabled"}
            )

        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/", tags=["System"])
    async def root():
        """API root endpoint"""
        return {
            "name": "Covrily API",
            "version": VERSION,
            "environment": settings.environment,
            "docs": "/docs" if settings.environment != "production" else None,
        }

    return app


def jsonable_errors(exc: RequestValidationError):
    """Validation errors with non-JSON context (e.g. ValueError instances) stringified"""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
