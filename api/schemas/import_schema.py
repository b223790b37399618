"""
Import-related Pydantic schemas.

This module contains schemas for catalog spreadsheet import responses.
"""

from typing import List
from pydantic import BaseModel, Field
from api.schemas.job_schema import JobCreateResponse


class RowErrorResponse(BaseModel):
    """A spreadsheet line that was not saved."""

    row: int = Field(..., description="1-based spreadsheet line number")
    reason: str = Field(..., description="Why the line was skipped")


class ImportResultResponse(BaseModel):
    """Counters and per-row errors of a synchronous import."""

    rows_read: int = Field(..., description="Non-blank data rows after the header")
    rows_saved: int = Field(..., description="Rows upserted")
    rows_skipped: int = Field(..., description="Rows discarded (equals len(errors))")
    errors: List[RowErrorResponse] = Field(default_factory=list, description="Per-row errors")

    class Config:
        json_schema_extra = {
            "example": {
                "rows_read": 2,
                "rows_saved": 1,
                "rows_skipped": 1,
                "errors": [
                    {"row": 3, "reason": "código do grupo inválido: \"abc\" não é um número"}
                ]
            }
        }


class ImportStartResponse(JobCreateResponse):
    """
    Response when a background import is initiated.

    Extends JobCreateResponse with the catalog being imported.
    """

    catalog: str = Field(..., description="Catalog being imported (catmat or catser)")

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "message": "CATMAT import job started",
                "status_url": "/api/v1/import/job/abc-123-def-456",
                "catalog": "catmat"
            }
        }
