"""
Import router - Background catalog imports and job tracking.

This module provides endpoints for uploading a catalog spreadsheet to a
Celery worker and checking or cancelling the resulting job.
"""

import os
import logging
import tempfile
import shutil
import uuid
from pathlib import Path

import redis
from celery.result import AsyncResult
from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, status

from api.config import settings
from api.dependencies import get_current_user, verify_file_extension, verify_file_size
from api.schemas.import_schema import ImportStartResponse
from api.schemas.job_schema import JobStatusEnum, JobStatusResponse, JobProgressResponse
from services.catalog_descriptors import get_descriptor
from tasks.celery_app import celery_app
from tasks.import_tasks import import_catalog_file, publish_progress, read_error, read_progress

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/import', tags=['import'])

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# Celery state -> API job status
CELERY_STATUS = {
    'PENDING': JobStatusEnum.PENDING,
    'RECEIVED': JobStatusEnum.PENDING,
    'STARTED': JobStatusEnum.PROCESSING,
    'RETRY': JobStatusEnum.PROCESSING,
    'SUCCESS': JobStatusEnum.SUCCESS,
    'FAILURE': JobStatusEnum.FAILED,
    'REVOKED': JobStatusEnum.CANCELLED,
}

FINISHED_STATES = ('SUCCESS', 'FAILURE', 'REVOKED')


def _get_progress(job_id: str):
    try:
        return read_progress(redis_client, job_id)
    except redis.RedisError as e:
        logger.warning(f"Could not fetch progress from Redis for {job_id}: {e}")
        return None


def _require_known_job(job_id: str):
    """
    Every accepted upload writes a 'queued' progress record, so a job
    without one is unknown (Celery reports unknown ids as PENDING).
    """
    task = AsyncResult(job_id, app=celery_app)
    progress = _get_progress(job_id)

    if progress is None and task.state == 'PENDING':
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return task, progress


@router.post('/{catalog}/upload', response_model=ImportStartResponse, status_code=status.HTTP_202_ACCEPTED)
def upload_catalog_file(
    catalog: str,
    file: UploadFile = File(..., description="Catalog spreadsheet (.xlsx)"),
    current_user: str = Depends(get_current_user)
):
    """
    Upload a CATMAT / CATSER spreadsheet and start a background import.

    **Workflow:**
    1. Validate catalog and file extension
    2. Save upload to a temporary file and check its size
    3. Enqueue Celery task
    4. Return job ID for status tracking

    **Progress Tracking:**
    - Poll GET /api/v1/import/job/{job_id} for status

    **Returns:**
    - 202 Accepted with job_id
    """
    try:
        descriptor = get_descriptor(catalog)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info(f"{descriptor.label} upload request from {current_user}: {file.filename}")

    verify_file_extension(file.filename)

    temp_path = None
    try:
        fd, temp_path = tempfile.mkstemp(
            suffix=Path(file.filename).suffix,
            dir=settings.TEMP_UPLOAD_DIR
        )

        with os.fdopen(fd, 'wb') as tmp:
            shutil.copyfileobj(file.file, tmp)

        file_size = os.path.getsize(temp_path)
        verify_file_size(file_size)

        logger.info(f"File saved to {temp_path} ({file_size / 1024 / 1024:.2f} MB)")

        # 'queued' is published before the worker can report progress
        job_id = str(uuid.uuid4())
        try:
            publish_progress(redis_client, job_id, 'queued', 0, f"{descriptor.label} import queued")
        except redis.RedisError as e:
            logger.warning(f"Could not publish initial progress for {job_id}: {e}")

        task = import_catalog_file.apply_async(
            args=[temp_path, descriptor.name, file.filename],
            task_id=job_id
        )

    except HTTPException:
        # Clean up temp file on validation errors
        if temp_path and os.path.exists(temp_path):
            os.unlink(temp_path)
        raise

    except Exception as e:
        if temp_path and os.path.exists(temp_path):
            os.unlink(temp_path)

        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Upload failed: {str(e)}"
        )

    logger.info(f"Started import task {task.id} for file: {file.filename}")

    return ImportStartResponse(
        job_id=task.id,
        message=f"{descriptor.label} import job started",
        status_url=f"{settings.API_PREFIX}/import/job/{task.id}",
        catalog=descriptor.name
    )


@router.get('/job/{job_id}', response_model=JobStatusResponse)
def get_job_status(job_id: str):
    """
    Get current status of an import job.

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Job is currently running
    - `success`: Job completed; `result` holds the ImportResult
    - `failed`: Job failed; `error` holds the message and any partial result
    - `cancelled`: Job was revoked
    """
    task, progress = _require_known_job(job_id)
    state = task.state

    result = None
    error = None

    if state == 'SUCCESS':
        result = task.result
    elif state == 'FAILURE':
        try:
            error = read_error(redis_client, job_id)
        except redis.RedisError as e:
            logger.warning(f"Could not fetch failure details for {job_id}: {e}")
        if error is None:
            error = {'error': str(task.result), 'type': type(task.result).__name__}

    return JobStatusResponse(
        job_id=job_id,
        status=CELERY_STATUS.get(state, JobStatusEnum.PROCESSING),
        progress=JobProgressResponse(**progress) if progress else None,
        result=result,
        error=error
    )


@router.delete('/job/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_job(
    job_id: str,
    current_user: str = Depends(get_current_user)
):
    """
    Cancel a pending or processing job.

    Rows the worker already saved stay saved.

    **Returns:**
    - 204 No Content if successfully cancelled
    - 404 if job not found
    - 400 if job already finished
    """
    task, _ = _require_known_job(job_id)

    if task.state in FINISHED_STATES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel job with status '{CELERY_STATUS[task.state].value}'"
        )

    celery_app.control.revoke(job_id, terminate=True)
    logger.info(f"Job {job_id} cancelled by {current_user}")

    try:
        publish_progress(redis_client, job_id, 'cancelled', 0, "Import cancelled")
    except redis.RedisError as e:
        logger.warning(f"Could not publish cancellation for {job_id}: {e}")

    return None  # 204 No Content
