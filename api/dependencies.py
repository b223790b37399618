"""
Dependency injection utilities for FastAPI.

This module provides reusable dependencies for database access, the
search cache, the catalog services, authentication and upload checks.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Generator, Optional

from fastapi import Depends, HTTPException, Header, status
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from api.config import settings
from services.cache_service import build_cache
from services.catalog_import_service import CatalogImportService
from services.catalog_search_service import CatalogSearchService
from services.catalog_stats_service import CatalogStatsService
from services.catalog_store import CatalogStore

logger = logging.getLogger(__name__)


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create the pooled engine used by the API, the workers and the CLI.

    PostgreSQL connections get a server-side statement timeout so a slow
    search cannot hold a pooled connection forever.
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False}, echo=settings.DEBUG)

    connect_args = {}
    if settings.DB_STATEMENT_TIMEOUT_MS > 0:
        connect_args['options'] = f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=settings.DB_POOL_PRE_PING,
        connect_args=connect_args,
        echo=settings.DEBUG
    )


# Create database engine
engine = create_db_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_engine() -> Engine:
    """Shared engine dependency (overridden in tests)."""
    return engine


def get_db() -> Generator[Session, None, None]:
    """
    Get database session dependency.

    Yields database session and ensures it's closed after use.

    Usage:
        @app.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            # Use db session
            pass
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache()
def get_search_cache():
    """
    Process-wide search cache.

    Built on first use from settings; L2 is only attached when
    CACHE_REDIS_URL is set and answers a ping.
    """
    return build_cache(
        enabled=settings.CACHE_ENABLED,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        max_cost=settings.CACHE_L1_MAX_COST,
        redis_url=settings.CACHE_REDIS_URL,
        redis_timeout=settings.CACHE_REDIS_TIMEOUT_SECONDS
    )


def get_catalog_store(db_engine: Engine = Depends(get_engine)) -> CatalogStore:
    return CatalogStore(db_engine)


def get_import_service(store: CatalogStore = Depends(get_catalog_store)) -> CatalogImportService:
    return CatalogImportService(store, progress_every=settings.IMPORT_PROGRESS_EVERY)


def get_search_service(
    db_engine: Engine = Depends(get_engine),
    cache=Depends(get_search_cache)
) -> CatalogSearchService:
    return CatalogSearchService(db_engine, cache)


def get_stats_service(db: Session = Depends(get_db)) -> CatalogStatsService:
    return CatalogStatsService(db)


def get_api_key(
    x_api_key: str = Header(None, alias=settings.API_KEY_HEADER)
) -> str:
    """
    Validate API key from header.

    Args:
        x_api_key: API key from request header

    Returns:
        Validated API key

    Raises:
        HTTPException: If API key is invalid or missing
    """
    if not settings.ENABLE_API_KEY_AUTH:
        # API key auth disabled - allow all requests
        return "public"

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return x_api_key


def get_current_user(api_key: str = Depends(get_api_key)) -> str:
    """User identifier attached to background jobs (the API key for now)."""
    return api_key


def verify_file_size(file_size: int) -> bool:
    """
    Verify uploaded file size is within limit.

    Args:
        file_size: File size in bytes

    Returns:
        True if size is acceptable

    Raises:
        HTTPException: If file is too large
    """
    max_size_bytes = settings.MAX_FILE_SIZE_MB * 1024 * 1024

    if file_size > max_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"arquivo muito grande ({file_size / 1024 / 1024:.1f} MB); "
                   f"máximo permitido {settings.MAX_FILE_SIZE_MB} MB"
        )

    return True


def verify_file_extension(filename: str) -> bool:
    """
    Verify file has allowed extension.

    Args:
        filename: Name of uploaded file

    Returns:
        True if extension is allowed

    Raises:
        HTTPException: If extension is not allowed
    """
    ext = Path(filename or '').suffix.lower()

    if ext not in [e.lower() for e in settings.ALLOWED_EXTENSIONS]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"extensão '{ext}' não permitida; "
                   f"extensões aceitas: {', '.join(settings.ALLOWED_EXTENSIONS)}"
        )

    return True
