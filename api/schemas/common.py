"""
Common Pydantic schemas used across the API.

This module contains shared schemas for errors, health checks and other
common response patterns.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str = Field(..., description="Error message")
    detail: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    path: Optional[str] = Field(None, description="Request path that caused the error")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "Category 12 not found",
            "detail": {"kind": "validation", "level": "category"},
            "timestamp": "2025-10-15T12:00:00Z",
            "path": "/api/taxonomy/categories/12/relocate"
        }
    })


class SuccessResponse(BaseModel):
    """Standard success response."""

    success: bool = Field(True, description="Operation success flag")
    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional data")


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="API version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
    celery: str = Field(..., description="Celery worker status")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "healthy",
            "timestamp": "2025-10-15T12:00:00Z",
            "version": "1.0.0",
            "database": "connected",
            "redis": "connected",
            "celery": "active (2 workers)"
        }
    })
