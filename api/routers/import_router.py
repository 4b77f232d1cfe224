"""
Import router - Handle catalog uploads and job tracking.

This module provides endpoints for uploading service catalogs, previewing
how they map into the hierarchy, and checking the status of import jobs.
"""

import os
import logging
import tempfile
import shutil
import json
import uuid
from pathlib import Path
from datetime import datetime
from typing import Optional

import redis
from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.config import settings, ensure_temp_dir
from api.dependencies import get_db, get_current_user, verify_file_extension, verify_file_size
from api.schemas.import_schema import ImportStartResponse, ImportPreviewResponse
from api.schemas.job_schema import JobStatusResponse, JobProgressResponse, JobListResponse, JobListItem
from backend.models.job import JobRun, JobType, JobStatus
from services.duplicate_service import DuplicateDetector
from services.errors import TaxonomyError
from services.reconcile_service import parse_mode
from services.taxonomy_import_service import ImportFile, ImportOptions, TaxonomyImportService
from services.tabular_service import format_for_filename
from tasks.import_tasks import import_catalog_file, progress_key

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/import', tags=['import'])

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def _taxonomy_http_error(error: TaxonomyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error.to_dict()
    )


@router.post('/upload', response_model=ImportStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_catalog_file(
    file: UploadFile = File(..., description="Catalog file (.xlsx, .xlsm, .csv, .tsv or .txt)"),
    sector_name: str = Form(..., min_length=1, max_length=255, description="Sector receiving the catalog"),
    batch_label: Optional[str] = Form(None, max_length=255, description="Category label (defaults to the filename)"),
    mode: str = Form(settings.DEFAULT_IMPORT_MODE, description="'skip' or 'overwrite'"),
    clear_existing: bool = Form(False, description="Delete the whole taxonomy before importing"),
    has_header: bool = Form(False, description="First row is a header row"),
    detect_duplicates: bool = Form(True, description="Report near-duplicate names"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Upload a catalog file and start an import job.

    **Workflow:**
    1. Validate file type, size and options
    2. Save the upload to a temporary location
    3. Create job record in database
    4. Enqueue Celery task
    5. Return job ID for status tracking

    **Progress Tracking:**
    - Poll GET /api/import/job/{job_id} for status
    - Connect to WebSocket /ws/import/{job_id} for real-time updates
    """
    logger.info(f"Upload request from {current_user}: {file.filename} into sector '{sector_name}'")

    verify_file_extension(file.filename)
    try:
        options = ImportOptions(
            mode=parse_mode(mode),
            clear_existing=clear_existing,
            has_header=has_header,
            detect_duplicates=detect_duplicates,
            duplicate_threshold=settings.DUPLICATE_THRESHOLD
        )
    except TaxonomyError as e:
        raise _taxonomy_http_error(e)

    temp_file = None
    try:
        ensure_temp_dir()
        fd, temp_path = tempfile.mkstemp(
            suffix=Path(file.filename).suffix,
            dir=settings.TEMP_UPLOAD_DIR
        )

        with os.fdopen(fd, 'wb') as tmp:
            shutil.copyfileobj(file.file, tmp)

        temp_file = temp_path

        file_size = os.path.getsize(temp_path)
        verify_file_size(file_size)

        logger.info(f"File saved to {temp_path} ({file_size / 1024 / 1024:.2f} MB)")

        label = batch_label or file.filename
        params = {
            'filename': file.filename,
            'sector_name': sector_name,
            'batch_label': label,
            'options': options.to_dict(),
            'file_size_mb': round(file_size / 1024 / 1024, 2)
        }

        # Record the job before the worker can pick it up
        job_id = str(uuid.uuid4())
        job_run = JobRun(
            job_id=job_id,
            job_type=JobType.IMPORT.value,
            status=JobStatus.PENDING.value,
            params=params,
            created_by=current_user
        )
        db.add(job_run)
        db.commit()

        task = import_catalog_file.apply_async(
            args=[temp_path, sector_name, label, options.to_dict()],
            task_id=job_id
        )

        logger.info(f"Started import task {task.id} for file: {file.filename}")

        return ImportStartResponse(
            job_id=task.id,
            message="Catalog import job started",
            status_url=f"/api/import/job/{task.id}",
            websocket_url=f"/ws/import/{task.id}"
        )

    except HTTPException:
        if temp_file and os.path.exists(temp_file):
            os.unlink(temp_file)
        raise

    except Exception as e:
        if temp_file and os.path.exists(temp_file):
            os.unlink(temp_file)

        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Upload failed: {str(e)}"
        )


@router.post('/preview', response_model=ImportPreviewResponse)
async def preview_catalog_file(
    file: UploadFile = File(..., description="Catalog file to map without importing"),
    sector_name: str = Form(..., min_length=1, max_length=255),
    batch_label: Optional[str] = Form(None, max_length=255),
    has_header: bool = Form(False),
    db: Session = Depends(get_db)
):
    """
    Parse and map a catalog without writing anything.

    Returns the mapped sector tree, per-row outcomes and possible duplicates
    so a catalog can be checked before it is imported.
    """
    verify_file_extension(file.filename)
    content = await file.read()
    verify_file_size(len(content))

    service = TaxonomyImportService(db_session=db)
    try:
        mapping = service.map_file(
            ImportFile(content, format_for_filename(file.filename), sector_name, batch_label or file.filename),
            ImportOptions(has_header=has_header)
        )
    except TaxonomyError as e:
        raise _taxonomy_http_error(e)

    duplicates = DuplicateDetector(settings.DUPLICATE_THRESHOLD).scan_mapped(mapping.sector)
    return ImportPreviewResponse(
        sector=mapping.sector.to_dict(),
        row_outcomes=[o.to_dict() for o in mapping.outcomes],
        duplicates=[d.to_dict() for d in duplicates]
    )


@router.get('/job/{job_id}', response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    db: Session = Depends(get_db)
):
    """
    Get current status of a job (import, reset or validation).

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Job is currently running
    - `success`: Job completed (the result may still list row errors)
    - `failed`: Job failed with error
    - `cancelled`: Job was cancelled; work committed before that is kept
    """
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    # Get latest progress from Redis (real-time)
    progress = None
    try:
        progress_data = redis_client.get(progress_key(job_id))
        if progress_data:
            progress = JobProgressResponse(**json.loads(progress_data))
    except Exception as e:
        logger.warning(f"Could not fetch progress from Redis for {job_id}: {e}")

    # If no Redis progress, fall back to the latest persisted entry
    if not progress and job_run.progress:
        latest_progress = job_run.progress[-1]
        progress = JobProgressResponse(
            stage=latest_progress.stage,
            percent=float(latest_progress.percent),
            message=latest_progress.message or "",
            completed=latest_progress.stage == 'complete',
            error=latest_progress.error,
            timestamp=latest_progress.timestamp
        )

    return JobStatusResponse(
        job_id=job_run.job_id,
        job_type=job_run.job_type,
        status=job_run.status,
        created_at=job_run.created_at,
        started_at=job_run.started_at,
        completed_at=job_run.completed_at,
        progress=progress,
        params=job_run.params,
        result=job_run.result,
        error=job_run.error,
        sector_id=job_run.sector_id,
        created_by=job_run.created_by
    )


@router.get('/jobs', response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    job_type: Optional[str] = Query(None, description="Filter by job type"),
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db)
):
    """
    List all jobs with pagination and filtering.

    **Filters:**
    - `job_type`: 'import', 'reset' or 'validation'
    - `status`: Filter by job status
    """
    query = db.query(JobRun)

    if job_type:
        query = query.filter_by(job_type=job_type)

    if status:
        query = query.filter_by(status=status)

    total = query.count()

    jobs = query.order_by(JobRun.created_at.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    total_pages = (total + page_size - 1) // page_size

    return JobListResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=[JobListItem.model_validate(job) for job in jobs]
    )


@router.delete('/job/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Cancel a pending or processing job.

    A running import notices the cancellation before its next subcategory
    batch and stops there; batches already committed stay in the store.
    """
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    if job_run.status not in (JobStatus.PENDING.value, JobStatus.PROCESSING.value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel job with status '{job_run.status}'"
        )

    was_pending = job_run.status == JobStatus.PENDING.value
    job_run.status = JobStatus.CANCELLED.value
    job_run.completed_at = datetime.utcnow()
    job_run.error = {
        'error': 'Job cancelled by user',
        'cancelled_by': current_user,
        'cancelled_at': datetime.utcnow().isoformat()
    }
    db.commit()

    # Queued tasks never start; running ones stop cooperatively
    if was_pending:
        try:
            from tasks.celery_app import celery_app
            celery_app.control.revoke(job_id)
            logger.info(f"Revoked Celery task {job_id}")
        except Exception as e:
            logger.warning(f"Could not revoke Celery task {job_id}: {e}")

    logger.info(f"Job {job_id} cancelled by {current_user}")

    return None
