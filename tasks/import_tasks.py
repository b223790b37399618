"""
Import background tasks.

This module defines the Celery task for catalog spreadsheet imports with
progress tracking in Redis.
"""

import os
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis
from celery import Task
from celery.exceptions import SoftTimeLimitExceeded

from api.config import settings
from api.dependencies import engine
from tasks.celery_app import celery_app
from services.catalog_descriptors import get_descriptor
from services.catalog_import_service import CatalogImportService
from services.catalog_store import CatalogStore
from services.errors import ImportFailed

logger = logging.getLogger(__name__)

# Create Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def progress_key(job_id: str) -> str:
    return f'job_progress:{job_id}'


def error_key(job_id: str) -> str:
    return f'job_error:{job_id}'


def publish_progress(client, job_id: str, stage: str, percent: float, message: str):
    """Store the latest progress record of a job (expires with the job results)."""
    progress_data = {
        'stage': stage,
        'percent': float(percent),
        'message': message,
        'timestamp': datetime.utcnow().isoformat()
    }
    client.setex(progress_key(job_id), settings.PROGRESS_CACHE_EXPIRY, json.dumps(progress_data))


def read_progress(client, job_id: str) -> Optional[Dict[str, Any]]:
    data = client.get(progress_key(job_id))
    return json.loads(data) if data else None


def read_error(client, job_id: str) -> Optional[Dict[str, Any]]:
    data = client.get(error_key(job_id))
    return json.loads(data) if data else None


class ImportTask(Task):
    """
    Base task class with progress tracking.

    Progress and failure details are kept in Redis so the API can report
    them while the task runs and after it fails.
    """

    def on_progress(self, stage: str, percent: float, message: str):
        """
        Update job progress in Redis.

        Args:
            stage: Current stage ('reading', 'importing', 'complete', 'failed')
            percent: Progress percentage (0-100)
            message: Human-readable progress message
        """
        job_id = self.request.id

        try:
            publish_progress(redis_client, job_id, stage, percent, message)
            logger.debug(f"Progress updated: {job_id} - {stage} ({percent}%)")
        except redis.RedisError as e:
            logger.error(f"Error updating progress for {job_id}: {e}")

    def record_error(self, error_details: Dict[str, Any]):
        """Keep failure details (and any partial result) for the status endpoint."""
        job_id = self.request.id

        try:
            redis_client.setex(error_key(job_id), settings.PROGRESS_CACHE_EXPIRY, json.dumps(error_details))
        except redis.RedisError as e:
            logger.error(f"Error storing failure details for {job_id}: {e}")


@celery_app.task(base=ImportTask, bind=True, name='tasks.import_tasks.import_catalog_file')
def import_catalog_file(self, file_path: str, catalog: str,
                        filename: Optional[str] = None) -> Dict[str, Any]:
    """
    Background task to import a catalog spreadsheet.

    Args:
        file_path: Path to the uploaded workbook (removed when the task ends)
        catalog: 'catmat' or 'catser'
        filename: Original upload name, for logs and the result

    Returns:
        {
            'catalog': str,
            'filename': str,
            'result': ImportResult dict
        }
    """
    job_id = self.request.id
    logger.info(f"Starting {catalog} import task {job_id} for file: {file_path}")

    try:
        descriptor = get_descriptor(catalog)
        service = CatalogImportService(
            CatalogStore(engine),
            progress_callback=self.on_progress,
            progress_every=settings.IMPORT_PROGRESS_EVERY
        )

        with open(file_path, 'rb') as stream:
            result = service.import_catalog(descriptor, stream)

        logger.info(f"Import task {job_id} completed: saved {result.rows_saved} "
                    f"of {result.rows_read} rows")
        return {
            'catalog': descriptor.name,
            'filename': filename or os.path.basename(file_path),
            'result': result.to_dict()
        }

    except SoftTimeLimitExceeded:
        logger.error(f"Import task {job_id} hit the soft time limit; rows already saved stay saved")
        self.record_error({'error': 'importação excedeu o tempo limite', 'type': 'SoftTimeLimitExceeded'})
        self.on_progress('failed', 0, "Import timed out")
        raise

    except Exception as e:
        error_details = {
            'error': str(e),
            'type': type(e).__name__,
            'catalog': catalog,
            'filename': filename
        }
        if isinstance(e, ImportFailed) and e.result is not None:
            error_details['result'] = e.result.to_dict()

        logger.error(f"Import task {job_id} failed: {e}", exc_info=True)
        self.record_error(error_details)
        self.on_progress('failed', 0, f"Import failed: {e}")

        # Re-raise for Celery to handle
        raise

    finally:
        try:
            os.remove(file_path)
            logger.info(f"Cleaned up temporary file: {file_path}")
        except OSError as e:
            logger.warning(f"Could not remove temp file {file_path}: {e}")
