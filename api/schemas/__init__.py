"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API response
serialization.
"""

from api.schemas.common import ErrorResponse, HealthCheckResponse
from api.schemas.job_schema import (
    JobStatusEnum, JobProgressResponse, JobStatusResponse, JobCreateResponse
)
from api.schemas.import_schema import RowErrorResponse, ImportResultResponse, ImportStartResponse
from api.schemas.catalog_schema import (
    CatmatItemResponse, CatserItemResponse, SearchResponse,
    GroupCountResponse, StatusCountResponse, CatalogStatsResponse
)

__all__ = [
    # Common
    'ErrorResponse',
    'HealthCheckResponse',

    # Job
    'JobStatusEnum',
    'JobProgressResponse',
    'JobStatusResponse',
    'JobCreateResponse',

    # Import
    'RowErrorResponse',
    'ImportResultResponse',
    'ImportStartResponse',

    # Catalog
    'CatmatItemResponse',
    'CatserItemResponse',
    'SearchResponse',
    'GroupCountResponse',
    'StatusCountResponse',
    'CatalogStatsResponse',
]
