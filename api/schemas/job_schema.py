"""
Job-related Pydantic schemas.

This module contains schemas for job status, progress, and results.
"""

from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class JobStatusEnum(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobTypeEnum(str, Enum):
    """Type of background job."""
    IMPORT = 'import'
    RESET = 'reset'
    VALIDATION = 'validation'


class JobProgressResponse(BaseModel):
    """Real-time progress update."""

    stage: str = Field(..., description="Current stage (e.g., 'parsing', 'reconciling')")
    percent: float = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    completed: bool = Field(False, description="True on the terminal success event")
    error: Optional[str] = Field(None, description="Error text on the terminal error event")
    timestamp: datetime = Field(..., description="Progress update timestamp")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "stage": "reconciling",
            "percent": 65.5,
            "message": "Reconciled subcategory 4/6: Disc Brakes",
            "completed": False,
            "error": None,
            "timestamp": "2025-10-15T12:30:45Z"
        }
    })


class JobStatusResponse(BaseModel):
    """Comprehensive job status response."""

    job_id: str = Field(..., description="Unique job identifier (Celery task ID)")
    job_type: JobTypeEnum = Field(..., description="Type of job")
    status: JobStatusEnum = Field(..., description="Current job status")
    created_at: datetime = Field(..., description="Job creation timestamp")
    started_at: Optional[datetime] = Field(None, description="Job start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Job completion timestamp")

    progress: Optional[JobProgressResponse] = Field(None, description="Latest progress update")

    params: Optional[Dict[str, Any]] = Field(None, description="Job parameters")
    result: Optional[Dict[str, Any]] = Field(None, description="Job results (if completed)")
    error: Optional[Dict[str, Any]] = Field(None, description="Error details (if failed)")

    sector_id: Optional[int] = Field(None, description="Sector written by an import job")
    created_by: Optional[str] = Field(None, description="User who created the job")

    model_config = ConfigDict(from_attributes=True)


class JobCreateResponse(BaseModel):
    """Response when a job is created."""

    job_id: str = Field(..., description="Unique job identifier")
    message: str = Field(default="Job created successfully", description="Success message")
    status_url: str = Field(..., description="URL to check job status")
    websocket_url: str = Field(..., description="WebSocket URL for real-time updates")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "job_id": "abc-123-def-456",
            "message": "Catalog import job started",
            "status_url": "/api/import/job/abc-123-def-456",
            "websocket_url": "/ws/import/abc-123-def-456"
        }
    })


class JobListItem(BaseModel):
    """Job list item for job history."""

    job_id: str
    job_type: JobTypeEnum
    status: JobStatusEnum
    created_at: datetime
    completed_at: Optional[datetime]
    sector_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    total: int = Field(..., description="Total number of jobs")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    items: List[JobListItem] = Field(..., description="Jobs in current page")
