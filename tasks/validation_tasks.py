"""
Validation background tasks.

This module defines the Celery task verifying the integrity of the stored
service taxonomy.
"""

import logging
import traceback
from datetime import datetime
from typing import Dict, Any

from tasks.celery_app import celery_app
from tasks.import_tasks import ImportTask, get_db_session
from services.validation_service import IntegrityValidationService
from backend.models.job import JobStatus

logger = logging.getLogger(__name__)


@celery_app.task(base=ImportTask, bind=True, name='tasks.validation_tasks.verify_taxonomy')
def verify_taxonomy(self) -> Dict[str, Any]:
    """
    Background task to verify the stored taxonomy.

    Returns:
        Validation report dictionary:
        {
            'status': 'passed' | 'failed',
            'problems': int,
            'counts': {...},
            'orphans': [...],
            'negative_values': [...],
            'sibling_collisions': [...]
        }
    """
    job_id = self.request.id
    logger.info(f"Starting verification task {job_id}")

    def on_progress(stage: str, percent: float, message: str):
        if stage == 'complete':
            self.on_progress(stage, message, percent, completed=True)
        else:
            self.on_progress(stage, message, percent)

    try:
        self.update_job_status(
            job_id=job_id,
            status=JobStatus.PROCESSING,
            started_at=datetime.utcnow()
        )

        with get_db_session() as session:
            service = IntegrityValidationService(
                db_session=session,
                progress_callback=on_progress
            )
            result = service.verify()

        self.update_job_status(
            job_id=job_id,
            status=JobStatus.SUCCESS,
            completed_at=datetime.utcnow(),
            result=result
        )

        logger.info(f"Verification task {job_id} completed: {result['status']}")
        return result

    except Exception as e:
        logger.error(f"Verification task {job_id} failed: {e}", exc_info=True)

        self.update_job_status(
            job_id=job_id,
            status=JobStatus.FAILED,
            completed_at=datetime.utcnow(),
            error={'error': str(e), 'traceback': traceback.format_exc()}
        )

        self.on_progress('error', f"Verification failed: {e}", 0, error=str(e))
        raise
