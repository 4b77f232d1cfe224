"""Models package for the service taxonomy."""
from backend.models.schema import (
    Base, Sector, Category, Subcategory, ServiceJob, normalize_name
)
from backend.models.job import JobRun, JobProgress, JobStatus, JobType

__all__ = [
    'Base', 'Sector', 'Category', 'Subcategory', 'ServiceJob', 'normalize_name',
    'JobRun', 'JobProgress', 'JobStatus', 'JobType'
]
