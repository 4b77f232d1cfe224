"""
Taxonomy router - Browse and maintain the stored service hierarchy.

This module provides endpoints for listing the tree, counting rows, resetting
the taxonomy, relocating categories, deleting nodes and scanning for possible
duplicate names.
"""

import logging
import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db, get_current_user
from api.schemas.job_schema import JobCreateResponse
from api.schemas.taxonomy_schema import (
    SectorNode, SectorListItem, TaxonomyCountsResponse, ResetResponse,
    RelocateCategoryRequest, DeleteNodeResponse, DuplicateScanResponse
)
from backend.models.job import JobRun, JobType, JobStatus
from backend.models.schema import Category, Sector
from services.cleanup_service import CleanupService
from services.duplicate_service import DuplicateDetector
from services.errors import ValidationError
from services.store_service import TaxonomyStore
from tasks.import_tasks import reset_taxonomy

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/taxonomy', tags=['taxonomy'])


def _build_tree(store: TaxonomyStore, sector) -> SectorNode:
    categories = []
    for category in store.list_by_parent('category', sector.id):
        subcategories = []
        for subcategory in store.list_by_parent('subcategory', category.id):
            subcategories.append({
                'id': subcategory.id,
                'name': subcategory.name,
                'description': subcategory.description,
                'jobs': store.list_by_parent('job', subcategory.id)
            })
        categories.append({
            'id': category.id,
            'name': category.name,
            'description': category.description,
            'position': category.position,
            'subcategories': subcategories
        })
    return SectorNode.model_validate({
        'id': sector.id,
        'name': sector.name,
        'description': sector.description,
        'position': sector.position,
        'is_active': sector.is_active,
        'categories': categories
    }, from_attributes=True)


@router.get('/sectors', response_model=List[SectorListItem])
async def list_sectors(db: Session = Depends(get_db)):
    """List sectors in display order with their category counts."""
    rows = (
        db.query(Sector, func.count(Category.id))
        .outerjoin(Category, Category.sector_id == Sector.id)
        .group_by(Sector.id)
        .order_by(Sector.position, Sector.id)
        .all()
    )
    return [
        SectorListItem(
            id=sector.id,
            name=sector.name,
            position=sector.position,
            is_active=sector.is_active,
            category_count=category_count
        )
        for sector, category_count in rows
    ]


@router.get('/tree', response_model=List[SectorNode])
async def get_tree(
    sector_id: Optional[int] = Query(None, description="Limit the tree to one sector"),
    db: Session = Depends(get_db)
):
    """
    Get the full hierarchy (sector -> category -> subcategory -> job).

    **Example:**
    ```bash
    curl "http://localhost:8000/api/taxonomy/tree?sector_id=1"
    ```
    """
    store = TaxonomyStore(db)
    if sector_id is not None:
        sector = store.get('sector', sector_id)
        if sector is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Sector {sector_id} not found"
            )
        sectors = [sector]
    else:
        sectors = store.list_by_parent('sector')
    return [_build_tree(store, sector) for sector in sectors]


@router.get('/counts', response_model=TaxonomyCountsResponse)
async def get_counts(db: Session = Depends(get_db)):
    """Number of stored sectors, categories, subcategories and jobs."""
    return TaxonomyCountsResponse(**CleanupService(db).get_counts().to_dict())


@router.post('/reset', response_model=ResetResponse)
async def reset_all(
    confirm: bool = Query(False, description="Must be true; the reset cannot be undone"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Delete the whole service taxonomy.

    Irreversible and without backup, so it must be confirmed explicitly.
    """
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reset deletes all service data; repeat with confirm=true"
        )
    logger.warning(f"Taxonomy reset requested by {current_user}")
    removed = CleanupService(db).reset_all()
    return ResetResponse(removed=TaxonomyCountsResponse(**removed.to_dict()))


@router.post('/reset/job', response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def reset_all_in_background(
    confirm: bool = Query(False, description="Must be true; the reset cannot be undone"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """Run the taxonomy reset as a background job."""
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reset deletes all service data; repeat with confirm=true"
        )

    job_id = str(uuid.uuid4())
    db.add(JobRun(
        job_id=job_id,
        job_type=JobType.RESET.value,
        status=JobStatus.PENDING.value,
        params={},
        created_by=current_user
    ))
    db.commit()
    reset_taxonomy.apply_async(task_id=job_id)

    logger.warning(f"Started reset task {job_id} for {current_user}")
    return JobCreateResponse(
        job_id=job_id,
        message="Taxonomy reset job started",
        status_url=f"/api/import/job/{job_id}",
        websocket_url=f"/ws/import/{job_id}"
    )


@router.post('/categories/{category_id}/relocate', status_code=status.HTTP_204_NO_CONTENT)
async def relocate_category(
    category_id: int,
    request: RelocateCategoryRequest,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """Move a category, with its subcategories and jobs, to another sector."""
    try:
        CleanupService(db).relocate_category(category_id, request.new_sector_id)
    except ValidationError as e:
        code = status.HTTP_404_NOT_FOUND if 'not found' in e.message else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=e.to_dict())
    logger.info(f"Category {category_id} relocated to sector {request.new_sector_id} by {current_user}")
    return None


@router.delete('/{level}/{node_id}', response_model=DeleteNodeResponse)
async def delete_node(
    level: str = Path(..., pattern='^(sector|category|subcategory|job)$'),
    node_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """Delete one node together with all of its descendants."""
    try:
        removed = CleanupService(db).delete_node(level, node_id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    logger.info(f"{level} {node_id} deleted by {current_user}")
    return DeleteNodeResponse(
        level=level,
        node_id=node_id,
        removed=TaxonomyCountsResponse(**removed.to_dict())
    )


@router.get('/duplicates', response_model=DuplicateScanResponse)
async def scan_duplicates(
    threshold: float = Query(settings.DUPLICATE_THRESHOLD, gt=0, lt=1,
                             description="Similarity above which two sibling names are flagged"),
    db: Session = Depends(get_db)
):
    """Report sibling names in the stored tree that look like duplicates."""
    findings = DuplicateDetector(threshold).scan_store(TaxonomyStore(db))
    return DuplicateScanResponse(
        threshold=threshold,
        findings=[finding.to_dict() for finding in findings]
    )
