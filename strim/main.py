"""Strim Aggregator API - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from strim.api.responses import envelope
from strim.api.v1.router import api_router
from strim.config import Settings, get_settings
from strim.context import AppContext, get_context, get_session
from strim.db.database import init_db
from strim.db.models import ExploreIndexEntry, Video
from strim.logging import configure_logging
from strim.middleware import CorrelationIDMiddleware

configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    context: AppContext | None = getattr(app.state, "context", None)
    if context is None:
        context = AppContext.create(app.state.settings)
        app.state.context = context

    await init_db(context.engine)
    logger.info(
        f"Started with sources {context.registry.supported_sources()}, "
        f"cache {'enabled' if context.cache.is_available() else 'disabled'}"
    )

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await context.close()
    logger.info("Shutdown complete")


# ============ Exception handlers ============

async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "body"))
        message = f"Invalid parameter {location}: {first.get('msg')}" if location else first.get("msg")
    else:
        message = "Invalid request"
    return envelope(400, None, message)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return envelope(exc.status_code, None, str(exc.detail), headers=getattr(exc, "headers", None))


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return envelope(429, None, f"Rate limit exceeded: {exc.detail}")


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}", exc_info=exc)
    return envelope(500, None, "Internal server error")


def create_app(settings: Settings | None = None, *, context: AppContext | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    A pre-built context (tests) is used as-is; otherwise the lifespan
    builds one from settings.
    """
    if context is not None:
        settings = context.settings
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Multi-source drama catalogue with trending, hot and explore views",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    if context is not None:
        app.state.context = context

    # Rate limiting (limits themselves are declared per route)
    app.state.limiter = Limiter(key_func=get_remote_address)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # CORS middleware - restricted methods and headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID"],  # Allow frontend to read correlation ID
    )

    # Correlation ID middleware for request tracing
    app.add_middleware(CorrelationIDMiddleware)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/health/db")
    async def db_status(
        db: AsyncSession = Depends(get_session),
        context: AppContext = Depends(get_context),
    ):
        """Check database and cache status."""
        cache_ok = await context.cache.ping()
        try:
            video_count = (await db.execute(select(func.count()).select_from(Video))).scalar_one()
            explore_count = (
                await db.execute(select(func.count()).select_from(ExploreIndexEntry))
            ).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Health check DB error: {e}")
            return {
                "status": "error",
                "has_data": False,
                "cache": cache_ok,
                "error": "Database health check failed",
            }

        return {
            "status": "healthy",
            "has_data": video_count > 0,
            "video_count": video_count,
            "explore_index_count": explore_count,
            "cache": cache_ok,
            "background_tasks": context.tasks.get_task_stats(),
        }

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()
