"""
Job-related Pydantic schemas.

This module contains schemas for background import status and progress.
"""

from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime


class JobStatusEnum(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobProgressResponse(BaseModel):
    """Latest progress update published by the worker."""

    stage: str = Field(..., description="Current stage (reading, importing, complete)")
    percent: float = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    timestamp: datetime = Field(..., description="Progress update timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "stage": "importing",
                "percent": 65.5,
                "message": "Imported 4000/4000 rows",
                "timestamp": "2025-10-15T12:30:45Z"
            }
        }


class JobStatusResponse(BaseModel):
    """Background import status."""

    job_id: str = Field(..., description="Unique job identifier (Celery task ID)")
    status: JobStatusEnum = Field(..., description="Current job status")

    # Progress information
    progress: Optional[JobProgressResponse] = Field(None, description="Latest progress update")

    # Results
    result: Optional[Dict[str, Any]] = Field(None, description="Import result (if completed)")
    error: Optional[Dict[str, Any]] = Field(None, description="Error details (if failed)")

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "status": "processing",
                "progress": {
                    "stage": "importing",
                    "percent": 65.5,
                    "message": "Imported 4000/4000 rows",
                    "timestamp": "2025-10-15T12:00:30Z"
                },
                "result": None,
                "error": None
            }
        }


class JobCreateResponse(BaseModel):
    """Response when a job is created."""

    job_id: str = Field(..., description="Unique job identifier")
    message: str = Field(default="Job created successfully", description="Success message")
    status_url: str = Field(..., description="URL to check job status")
