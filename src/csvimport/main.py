"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from csvimport.config import settings
from csvimport.api.v1.router import api_router
from csvimport.models.database import async_session_maker, init_db, close_db
from csvimport.services.batch_processor import BatchProcessor
from csvimport.services.storage import ObjectStorage
from csvimport.services.user_service import UserServiceClient
from csvimport.workers.scheduler import JobScheduler, SchedulerState

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def build_scheduler(
    session_maker: async_sessionmaker[AsyncSession],
    storage: ObjectStorage,
    user_service: UserServiceClient,
) -> JobScheduler:
    """Wire the batch processor into a scheduler."""
    processor = BatchProcessor(
        session_maker=session_maker,
        storage=storage,
        user_service=user_service,
        batch_size=settings.csv_batch_size,
    )
    return JobScheduler(
        session_maker=session_maker,
        processor=processor,
        max_workers=settings.csv_worker_threads,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("Starting CSV Import Service", version=settings.app_version, environment=settings.environment)
    await init_db()
    yield
    # Shutdown
    logger.info("Shutting down CSV Import Service")
    await app.state.scheduler.stop()
    await app.state.user_service.close()
    await close_db()


def create_app(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    storage: ObjectStorage | None = None,
    user_service: UserServiceClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The application is the single owner of the scheduler; endpoints reach
    it through ``app.state``.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Bulk CSV import - validates uploads and creates records in batches",
        openapi_url="/openapi.json" if settings.debug else None,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.session_maker = session_maker or async_session_maker
    app.state.storage = storage or ObjectStorage()
    app.state.user_service = user_service or UserServiceClient()
    app.state.scheduler = build_scheduler(
        app.state.session_maker, app.state.storage, app.state.user_service
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.include_router(api_router)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Health check endpoint."""
        scheduler: JobScheduler = app.state.scheduler
        return {
            "status": "degraded" if scheduler.state == SchedulerState.ALARM else "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "scheduler": {
                "state": scheduler.state.value,
                "consecutiveFailures": scheduler.consecutive_failures,
                "lastError": scheduler.last_error,
            },
        }

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> ORJSONResponse:
        """Render client errors as ``{"error": ...}``."""
        return ORJSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )

    return app


# Create app instance
app = create_app()


def run() -> None:
    """Run the application with uvicorn (for development)."""
    import uvicorn

    uvicorn.run(
        "csvimport.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
