"""
Catalog router - synchronous CATMAT / CATSER import, search and statistics.

Import endpoints stream the uploaded workbook straight into the import
service and answer with the ImportResult. Domain errors propagate to the
exception handlers registered in api.main.
"""

import logging
import os
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from api.dependencies import (
    get_current_user, get_import_service, get_search_service, get_stats_service,
    verify_file_extension, verify_file_size
)
from api.schemas.catalog_schema import (
    CatalogStatsResponse, CatmatItemResponse, CatserItemResponse, SearchResponse
)
from api.schemas.import_schema import ImportResultResponse
from services.catalog_descriptors import CATMAT, CATSER, INT16_RANGE, INT32_RANGE, CatalogDescriptor
from services.catalog_import_service import CatalogImportService
from services.catalog_search_service import (
    DEFAULT_LIMIT, CatalogSearchService, CatmatSearchParams, CatserSearchParams
)
from services.catalog_stats_service import CatalogStatsService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=['catalog'])


# Query parameter parsing ------------------------------------------------------

def parse_int_param(value: Optional[str], default: int) -> int:
    """Integer query parameter; values that are missing or do not fit an int32 fall back to ``default``."""
    parsed = parse_code_filter(value, INT32_RANGE)
    return default if parsed is None else parsed


def parse_code_filter(value: Optional[str], bounds: Tuple[int, int]) -> Optional[int]:
    """Optional code filter; anything that is not an integer of the column width is ignored."""
    if value is None:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    low, high = bounds
    if not low <= parsed <= high:
        return None
    return parsed


def parse_text_filter(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# Import -----------------------------------------------------------------------

def _upload_size(file: UploadFile) -> int:
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


def _run_import(
    descriptor: CatalogDescriptor,
    file: Optional[UploadFile],
    service: CatalogImportService,
    current_user: str
) -> ImportResultResponse:
    if file is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="campo 'file' é obrigatório"
        )

    verify_file_extension(file.filename)
    file_size = _upload_size(file)
    verify_file_size(file_size)

    logger.info(f"{descriptor.label} import request from {current_user}: "
                f"{file.filename} ({file_size / 1024 / 1024:.2f} MB)")

    result = service.import_catalog(descriptor, file.file)
    return ImportResultResponse(**result.to_dict())


@router.post('/catmat/import', response_model=ImportResultResponse)
def import_catmat(
    file: Optional[UploadFile] = File(None, description="CATMAT spreadsheet (.xlsx)"),
    service: CatalogImportService = Depends(get_import_service),
    current_user: str = Depends(get_current_user)
):
    """
    Import a CATMAT spreadsheet synchronously.

    Rows are upserted by (group, class, PDM, item) code, so re-importing a
    file updates existing records instead of duplicating them. Invalid rows
    are skipped and listed in `errors`.

    **Errors:**
    - 400: missing file, wrong extension or unreadable workbook
    - 413: file too large
    - 422: header not found (partial result in `detail.result`)
    """
    return _run_import(CATMAT, file, service, current_user)


@router.post('/catser/import', response_model=ImportResultResponse)
def import_catser(
    file: Optional[UploadFile] = File(None, description="CATSER spreadsheet (.xlsx)"),
    service: CatalogImportService = Depends(get_import_service),
    current_user: str = Depends(get_current_user)
):
    """Import a CATSER spreadsheet synchronously (upsert by group, class and service code)."""
    return _run_import(CATSER, file, service, current_user)


# Search -----------------------------------------------------------------------

@router.get('/catmat/search', response_model=SearchResponse[CatmatItemResponse])
def search_catmat(
    q: Optional[str] = Query(None, description="Full-text query (websearch syntax)"),
    group_code: Optional[str] = Query(None, description="Group code filter"),
    class_code: Optional[str] = Query(None, description="Class code filter"),
    pdm_code: Optional[str] = Query(None, description="PDM code filter"),
    ncm_code: Optional[str] = Query(None, description="NCM code filter"),
    limit: Optional[str] = Query(None, description="Page size (default 50, max 100)"),
    offset: Optional[str] = Query(None, description="Rows to skip"),
    service: CatalogSearchService = Depends(get_search_service)
):
    """
    Search CATMAT items.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/v1/catmat/search?q=parafuso&group_code=53&limit=20"
    ```
    """
    params = CatmatSearchParams(
        query=q or '',
        group_code=parse_code_filter(group_code, INT16_RANGE),
        class_code=parse_code_filter(class_code, INT32_RANGE),
        pdm_code=parse_code_filter(pdm_code, INT32_RANGE),
        ncm_code=parse_text_filter(ncm_code),
        limit=parse_int_param(limit, DEFAULT_LIMIT),
        offset=parse_int_param(offset, 0),
    )
    result = service.search_catmat(params)
    return SearchResponse[CatmatItemResponse].model_validate(result.to_dict())


@router.get('/catser/search', response_model=SearchResponse[CatserItemResponse])
def search_catser(
    q: Optional[str] = Query(None, description="Full-text query (websearch syntax)"),
    group_code: Optional[str] = Query(None, description="Group code filter"),
    class_code: Optional[str] = Query(None, description="Class code filter"),
    service_code: Optional[str] = Query(None, description="Service code filter"),
    status_filter: Optional[str] = Query(None, alias='status', description="Status filter"),
    limit: Optional[str] = Query(None, description="Page size (default 50, max 100)"),
    offset: Optional[str] = Query(None, description="Rows to skip"),
    service: CatalogSearchService = Depends(get_search_service)
):
    """Search CATSER services."""
    params = CatserSearchParams(
        query=q or '',
        group_code=parse_code_filter(group_code, INT16_RANGE),
        class_code=parse_code_filter(class_code, INT32_RANGE),
        service_code=parse_code_filter(service_code, INT32_RANGE),
        status=parse_text_filter(status_filter),
        limit=parse_int_param(limit, DEFAULT_LIMIT),
        offset=parse_int_param(offset, 0),
    )
    result = service.search_catser(params)
    return SearchResponse[CatserItemResponse].model_validate(result.to_dict())


# Statistics -------------------------------------------------------------------

@router.get('/catalog/stats', response_model=CatalogStatsResponse)
def get_catalog_stats(service: CatalogStatsService = Depends(get_stats_service)):
    """Catalog totals, largest groups and CATSER status breakdown."""
    return CatalogStatsResponse(**service.get_catalog_stats())
