"""
Main FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from content_ingestion.api import api_router
from content_ingestion.core.config import settings
from content_ingestion.core.exceptions import ContentIngestionError
from content_ingestion.core.logging import get_logger, setup_logging
from content_ingestion.db.session import check_db_health, close_db, init_db
from content_ingestion.services.container import build_container

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan events.

    Startup: database check, pipeline container (adapters, extraction
    engine, embedding provider, job dispatcher).
    Shutdown: close HTTP clients and database connections.
    """
    logger.info(
        "starting_application",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        version=settings.APP_VERSION,
    )

    await init_db()
    app.state.container = build_container(settings)

    yield

    logger.info("shutting_down_application")

    await app.state.container.close()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Content ingestion pipeline: extraction, chunking and embedding",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check() -> JSONResponse:
    """
    Health check endpoint for monitoring.
    Includes database connectivity check.
    """
    db_healthy = await check_db_health()

    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "status": "healthy" if db_healthy else "unhealthy",
            "app_name": settings.APP_NAME,
            "environment": settings.APP_ENV,
            "version": settings.APP_VERSION,
            "database": "connected" if db_healthy else "disconnected",
        }
    )


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


# ========================================
# Exception Handlers
# ========================================

@app.exception_handler(ContentIngestionError)
async def ingestion_error_handler(request: Request, exc: ContentIngestionError) -> JSONResponse:
    """Render pipeline errors as ``{"error": {code, message, details}}``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        error_code=exc.code,
        error=exc.message,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"errors": errors},
            }
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled errors.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "content_ingestion.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
