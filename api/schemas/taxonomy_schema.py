"""
Taxonomy Pydantic schemas.

Schemas for browsing, counting and maintaining the stored service hierarchy.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class JobNode(BaseModel):
    id: int
    name: str
    description: str = ''
    estimated_time: Decimal
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class SubcategoryNode(BaseModel):
    id: int
    name: str
    description: str = ''
    jobs: List[JobNode] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CategoryNode(BaseModel):
    id: int
    name: str
    description: str = ''
    position: int = 0
    subcategories: List[SubcategoryNode] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SectorNode(BaseModel):
    id: int
    name: str
    description: str = ''
    position: int = 0
    is_active: bool = True
    categories: List[CategoryNode] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SectorListItem(BaseModel):
    id: int
    name: str
    position: int
    is_active: bool
    category_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class TaxonomyCountsResponse(BaseModel):
    """Number of stored rows per hierarchy level."""

    sectors: int = Field(..., description="Stored sectors")
    categories: int = Field(..., description="Stored categories")
    subcategories: int = Field(..., description="Stored subcategories")
    jobs: int = Field(..., description="Stored service jobs")

    model_config = ConfigDict(json_schema_extra={
        "example": {"sectors": 2, "categories": 7, "subcategories": 31, "jobs": 412}
    })


class ResetResponse(BaseModel):
    removed: TaxonomyCountsResponse
    message: str = "Service taxonomy reset"


class RelocateCategoryRequest(BaseModel):
    new_sector_id: int = Field(..., ge=1, description="Sector receiving the category")


class DeleteNodeResponse(BaseModel):
    level: str
    node_id: int
    removed: TaxonomyCountsResponse


class DuplicateScanResponse(BaseModel):
    threshold: float
    findings: List[Dict[str, Any]] = Field(default_factory=list)


class IntegritySummaryResponse(BaseModel):
    status: str
    problems: int
    counts: Dict[str, int]
    orphans: List[Dict[str, Any]] = Field(default_factory=list)
    negative_values: List[Dict[str, Any]] = Field(default_factory=list)
    sibling_collisions: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
