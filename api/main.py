"""
FastAPI application for the catalog import and search service.

This module creates and configures the FastAPI application, registering
all routers, exception handlers and middleware.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

import redis
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db, get_search_cache
from api.routers import catalog, import_router
from api.schemas.common import ErrorResponse, HealthCheckResponse
from services.errors import (
    CatalogError, FormatError, ImportCancelled, ImportFailed, QueryError, SchemaError
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the process-wide search cache on startup and releases its
    Redis connections on shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")  # Hide credentials
    logger.info(f"Redis: {settings.REDIS_URL.split('@')[-1]}")

    cache = get_search_cache()

    os.makedirs(settings.TEMP_UPLOAD_DIR, exist_ok=True)
    logger.info(f"Temp upload directory: {settings.TEMP_UPLOAD_DIR}")

    yield

    # Shutdown
    logger.info("Shutting down application")
    cache.close()


# Create FastAPI application
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS
)


# Exception handlers

def _error_response(request: Request, status_code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            path=str(request.url)
        ).model_dump(mode='json')
    )


def _partial_result(exc: ImportFailed):
    if exc.result is None:
        return None
    return {'result': exc.result.to_dict()}


@app.exception_handler(FormatError)
async def format_error_handler(request: Request, exc: FormatError):
    logger.warning(f"Rejected spreadsheet: {exc}")
    return _error_response(request, status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(SchemaError)
async def schema_error_handler(request: Request, exc: SchemaError):
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), _partial_result(exc))


@app.exception_handler(ImportFailed)
async def import_failed_handler(request: Request, exc: ImportFailed):
    logger.error(f"Import failed: {exc}")
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), _partial_result(exc))


@app.exception_handler(ImportCancelled)
async def import_cancelled_handler(request: Request, exc: ImportCancelled):
    return _error_response(request, status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    logger.error(f"Search failed: {exc}")
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "falha na pesquisa",
        {"message": str(exc)} if settings.DEBUG else None
    )


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    logger.error(f"Catalog error: {exc}", exc_info=True)
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        {"message": str(exc)} if settings.DEBUG else None
    )


# Register routers with API prefix
app.include_router(catalog.router, prefix=settings.API_PREFIX)
app.include_router(import_router.router, prefix=settings.API_PREFIX)


# Root endpoints

@app.get('/', include_in_schema=False)
async def root():
    """
    Root endpoint - points to the docs.
    """
    return {
        'message': f'Welcome to {settings.API_TITLE}',
        'version': settings.API_VERSION,
        'docs': '/docs',
        'redoc': '/redoc',
        'openapi': '/openapi.json'
    }


@app.get('/health', response_model=HealthCheckResponse, tags=['health'])
def health_check(
    db: Session = Depends(get_db),
    cache=Depends(get_search_cache)
):
    """
    Health check endpoint.

    Checks connectivity to:
    - Database (PostgreSQL)
    - Redis (broker / job progress)
    - Search cache tiers

    **Example:**
    ```bash
    curl http://localhost:8000/health
    ```
    """
    health_status = {
        'status': 'healthy',
        'timestamp': datetime.utcnow(),
        'version': settings.API_VERSION,
        'database': 'unknown',
        'redis': 'unknown',
        'cache': cache.describe()
    }

    # Check database
    try:
        db.execute(text('SELECT 1'))
        health_status['database'] = 'connected'
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status['database'] = 'disconnected'
        health_status['status'] = 'unhealthy'

    # Check Redis
    try:
        redis_client = redis.Redis.from_url(settings.REDIS_URL)
        redis_client.ping()
        health_status['redis'] = 'connected'
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        health_status['redis'] = 'disconnected'
        if health_status['status'] == 'healthy':
            health_status['status'] = 'degraded'

    return HealthCheckResponse(**health_status)


@app.get('/api/ping', tags=['health'])
async def ping():
    """
    Simple ping endpoint for load balancers.

    **Returns:**
    ```json
    {"ping": "pong"}
    ```
    """
    return {'ping': 'pong'}


# Middleware for request logging

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"{request.method} {request.url.path} - {response.status_code}")
    return response


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(
        'api.main:app',
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
