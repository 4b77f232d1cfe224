"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, HealthCheckResponse, SuccessResponse
from api.schemas.job_schema import (
    JobStatusEnum, JobTypeEnum, JobProgressResponse,
    JobStatusResponse, JobCreateResponse, JobListItem, JobListResponse
)
from api.schemas.import_schema import (
    ImportStartResponse, ImportResultResponse, ImportPreviewResponse
)
from api.schemas.taxonomy_schema import (
    SectorNode, CategoryNode, SubcategoryNode, JobNode, SectorListItem,
    TaxonomyCountsResponse, ResetResponse, RelocateCategoryRequest,
    DeleteNodeResponse, DuplicateScanResponse, IntegritySummaryResponse
)

__all__ = [
    # Common
    'ErrorResponse',
    'HealthCheckResponse',
    'SuccessResponse',

    # Job
    'JobStatusEnum',
    'JobTypeEnum',
    'JobProgressResponse',
    'JobStatusResponse',
    'JobCreateResponse',
    'JobListItem',
    'JobListResponse',

    # Import
    'ImportStartResponse',
    'ImportResultResponse',
    'ImportPreviewResponse',

    # Taxonomy
    'SectorNode',
    'CategoryNode',
    'SubcategoryNode',
    'JobNode',
    'SectorListItem',
    'TaxonomyCountsResponse',
    'ResetResponse',
    'RelocateCategoryRequest',
    'DeleteNodeResponse',
    'DuplicateScanResponse',
    'IntegritySummaryResponse',
]
