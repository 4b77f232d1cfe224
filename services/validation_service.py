"""
Validation Service - Post-import integrity checks of the stored taxonomy.

Verifies the persisted tree after imports, relocations and manual edits:
no node points at a missing parent, numeric job fields are non-negative and
no two siblings share a normalized name.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.models.schema import Sector, Category, Subcategory, ServiceJob
from services.store_service import MODELS, PARENT_COLUMNS

logger = logging.getLogger(__name__)

# Findings listed per check in the report
MAX_FINDINGS = 100

_PARENT_MODELS = {
    'category': Sector,
    'subcategory': Category,
    'job': Subcategory,
}


class IntegrityValidationService:
    """
    Framework-agnostic integrity validation service.

    Validates every level of the stored hierarchy and returns a report
    dictionary; it never modifies data.
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        """
        Initialize validation service.

        Args:
            db_session: SQLAlchemy database session
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
        """
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Validation progress: {stage} ({percent:.1f}%) - {message}")

    def verify(self) -> Dict[str, Any]:
        """
        Run all integrity checks.

        Returns:
            Validation report dictionary with:
            {
                'status': 'passed' | 'failed',
                'orphans': [...],
                'negative_values': [...],
                'sibling_collisions': [...],
                'counts': {level: int}
            }
        """
        logger.info("Starting taxonomy integrity validation")
        self._emit_progress('starting', 0, 'Initializing validation...')

        self._emit_progress('orphans', 10, 'Checking parent references...')
        orphans = self.find_orphans()

        self._emit_progress('numbers', 40, 'Checking job durations and prices...')
        negative_values = self.find_negative_values()

        self._emit_progress('siblings', 70, 'Checking sibling name collisions...')
        collisions = self.find_sibling_collisions()

        counts = {
            level: self.session.query(func.count(model.id)).scalar() or 0
            for level, model in MODELS.items()
        }

        problems = len(orphans) + len(negative_values) + len(collisions)
        report = {
            'status': 'passed' if problems == 0 else 'failed',
            'problems': problems,
            'counts': counts,
            'orphans': orphans[:MAX_FINDINGS],
            'negative_values': negative_values[:MAX_FINDINGS],
            'sibling_collisions': collisions[:MAX_FINDINGS]
        }

        self._emit_progress('complete', 100, 'Validation complete')
        logger.info(f"Validation complete: {report['status']} ({problems} problem(s))")
        return report

    def find_orphans(self) -> List[Dict[str, Any]]:
        """Nodes whose parent id does not resolve to an existing row."""
        orphans = []
        for level, parent_model in _PARENT_MODELS.items():
            model = MODELS[level]
            parent_column = getattr(model, PARENT_COLUMNS[level])
            rows = (
                self.session.query(model.id, model.name, parent_column)
                .outerjoin(parent_model, parent_model.id == parent_column)
                .filter(parent_model.id.is_(None))
                .all()
            )
            for node_id, name, parent_id in rows:
                orphans.append({
                    'level': level,
                    'id': node_id,
                    'name': name,
                    'missing_parent_id': parent_id
                })
        if orphans:
            logger.warning(f"Found {len(orphans)} orphaned node(s)")
        return orphans

    def find_negative_values(self) -> List[Dict[str, Any]]:
        rows = self.session.query(ServiceJob).filter(
            (ServiceJob.estimated_time < 0) | (ServiceJob.price < 0)
        ).all()
        return [
            {
                'id': job.id,
                'name': job.name,
                'estimated_time': float(job.estimated_time),
                'price': float(job.price)
            }
            for job in rows
        ]

    def find_sibling_collisions(self) -> List[Dict[str, Any]]:
        """Siblings sharing a normalized name (possible when constraints were bypassed)."""
        collisions = []
        for level, model in MODELS.items():
            parent_name = PARENT_COLUMNS[level]
            group_by = [model.normalized_name]
            if parent_name:
                group_by.insert(0, getattr(model, parent_name))
            rows = (
                self.session.query(*group_by, func.count(model.id))
                .group_by(*group_by)
                .having(func.count(model.id) > 1)
                .all()
            )
            for row in rows:
                collisions.append({
                    'level': level,
                    'parent_id': row[0] if parent_name else None,
                    'normalized_name': row[-2],
                    'count': row[-1]
                })
        return collisions
