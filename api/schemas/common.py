"""
Common Pydantic schemas used across the API.

This module contains shared schemas for errors, health checks and
other common response patterns.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str = Field(..., description="Error message")
    detail: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    path: Optional[str] = Field(None, description="Request path that caused the error")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "cabeçalho CATMAT não encontrado",
                "detail": {"result": {"rows_read": 0, "rows_saved": 0, "rows_skipped": 0, "errors": []}},
                "timestamp": "2025-10-15T12:00:00Z",
                "path": "/api/v1/catmat/import"
            }
        }


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="API version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
    cache: Dict[str, str] = Field(default_factory=dict, description="Search cache tier status")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2025-10-15T12:00:00Z",
                "version": "1.0.0",
                "database": "connected",
                "redis": "connected",
                "cache": {"l1": "enabled (5120/10000000 bytes)", "l2": "connected"}
            }
        }
