"""
Validation router - Trigger and inspect taxonomy integrity checks.

This module provides endpoints for verifying the stored hierarchy.
"""

import logging
import uuid
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_current_user
from api.schemas.job_schema import JobCreateResponse
from api.schemas.taxonomy_schema import IntegritySummaryResponse
from backend.models.job import JobRun, JobType, JobStatus
from services.validation_service import IntegrityValidationService
from tasks.validation_tasks import verify_taxonomy

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/taxonomy', tags=['validation'])


@router.post('/verify', response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_verification(
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Start a background integrity check of the stored taxonomy.

    **Checks:**
    1. Every category, subcategory and job points at an existing parent
    2. Job durations and prices are non-negative
    3. No two siblings share a normalized name

    **Example:**
    ```bash
    curl -X POST http://localhost:8000/api/taxonomy/verify
    ```
    """
    job_id = str(uuid.uuid4())
    db.add(JobRun(
        job_id=job_id,
        job_type=JobType.VALIDATION.value,
        status=JobStatus.PENDING.value,
        params={},
        created_by=current_user
    ))
    db.commit()

    verify_taxonomy.apply_async(task_id=job_id)
    logger.info(f"Started verification task {job_id}")

    return JobCreateResponse(
        job_id=job_id,
        message="Verification job started",
        status_url=f"/api/import/job/{job_id}",
        websocket_url=f"/ws/import/{job_id}"
    )


@router.get('/verify/summary', response_model=IntegritySummaryResponse)
async def get_verification_summary(db: Session = Depends(get_db)):
    """
    Run the integrity check synchronously and return its report.

    Read-only; suitable for small and medium taxonomies.
    """
    report = IntegrityValidationService(db_session=db).verify()
    return IntegritySummaryResponse(**report)
