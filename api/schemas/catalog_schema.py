"""
Catalog search and statistics Pydantic schemas.
"""

from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field

T = TypeVar('T')


class CatmatItemResponse(BaseModel):
    """One ranked CATMAT search hit."""

    id: int
    group_code: int
    group_name: str
    class_code: int
    class_name: str
    pdm_code: int
    pdm_name: str
    item_code: int
    item_description: str
    ncm_code: Optional[str] = None
    rank: float = Field(0.0, description="Full-text rank (0 when no text query)")


class CatserItemResponse(BaseModel):
    """One ranked CATSER search hit."""

    id: int
    material_service_type: str
    group_code: int
    group_name: str
    class_code: int
    class_name: str
    service_code: int
    service_description: str
    status: str
    rank: float = Field(0.0, description="Full-text rank (0 when no text query)")


class SearchResponse(BaseModel, Generic[T]):
    """One page of search results."""

    data: List[T] = Field(..., description="Items in current page")
    total: int = Field(..., description="Matching items ignoring limit/offset")
    limit: int = Field(..., description="Effective page size (1-100)")
    offset: int = Field(..., description="Effective offset")


class GroupCountResponse(BaseModel):
    group_code: int
    group_name: str
    count: int


class StatusCountResponse(BaseModel):
    status: str
    count: int


class CatalogStatsResponse(BaseModel):
    """Catalog totals and breakdowns."""

    catmat_total: int = Field(..., description="Rows in catmat_item")
    catser_total: int = Field(..., description="Rows in catser_item")
    catmat_by_group: List[GroupCountResponse] = Field(default_factory=list, description="Largest CATMAT groups")
    catser_by_group: List[GroupCountResponse] = Field(default_factory=list, description="Largest CATSER groups")
    catser_by_status: List[StatusCountResponse] = Field(default_factory=list, description="CATSER rows per status")

    class Config:
        json_schema_extra = {
            "example": {
                "catmat_total": 2,
                "catser_total": 1,
                "catmat_by_group": [{"group_code": 10, "group_name": "ARMAMENTO", "count": 2}],
                "catser_by_group": [{"group_code": 1, "group_name": "OBRAS", "count": 1}],
                "catser_by_status": [{"status": "Ativo", "count": 1}]
            }
        }
