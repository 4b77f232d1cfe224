"""
Import-related Pydantic schemas.

This module contains schemas for catalog import requests and responses.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from api.schemas.job_schema import JobCreateResponse


class ImportStartResponse(JobCreateResponse):
    """
    Response when import is initiated.

    Extends JobCreateResponse with import-specific messages.
    """

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "job_id": "abc-123-def-456",
            "message": "Catalog import job started",
            "status_url": "/api/import/job/abc-123-def-456",
            "websocket_url": "/ws/import/abc-123-def-456"
        }
    })


class ImportStatsResponse(BaseModel):
    total_sectors: int = 0
    total_categories: int = 0
    total_subcategories: int = 0
    total_services: int = 0
    files_processed: int = 0


class ImportResultResponse(BaseModel):
    """Detailed import results, as stored on a finished import job."""

    success: bool = Field(..., description="Full import without any error")
    partial: bool = Field(False, description="Some data imported, some errors recorded")
    cancelled: bool = Field(False, description="Import stopped by a cancellation request")
    message: str = Field(..., description="Human-readable summary")
    stats: ImportStatsResponse
    counts: Dict[str, Dict[str, int]] = Field(..., description="created/updated/unchanged/failed per level")
    rows_skipped: int = 0
    rows_failed: int = 0
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    row_outcomes: List[Dict[str, Any]] = Field(default_factory=list)
    duplicates: List[Dict[str, Any]] = Field(default_factory=list)
    files: List[Dict[str, Any]] = Field(default_factory=list)
    sector_ids: List[int] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "success": True,
            "partial": False,
            "cancelled": False,
            "message": "Imported 1 sector(s), 1 categories, 2 subcategories and 3 services from 1 file(s)",
            "stats": {
                "total_sectors": 1,
                "total_categories": 1,
                "total_subcategories": 2,
                "total_services": 3,
                "files_processed": 1
            },
            "counts": {"job": {"created": 3, "updated": 0, "unchanged": 0, "failed": 0}},
            "issues": [],
            "duplicates": []
        }
    })


class ImportPreviewResponse(BaseModel):
    """Mapped tree of a catalog, without writing anything."""

    sector: Dict[str, Any]
    row_outcomes: List[Dict[str, Any]] = Field(default_factory=list)
    duplicates: List[Dict[str, Any]] = Field(default_factory=list)
    issues: List[Dict[str, Any]] = Field(default_factory=list)
