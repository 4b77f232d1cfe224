"""
WebSocket router - Stream job progress to clients.

Import, reset and verification jobs all publish their latest progress event
under progress_key(job_id) in Redis; this endpoint relays each change and
ends with the job's final status, result or error.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, status
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db
from backend.models.job import JobRun
from tasks.import_tasks import progress_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=['websocket'])

redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

POLL_INTERVAL_SECONDS = 0.5


def read_progress(job_id: str) -> Optional[Dict[str, Any]]:
    """Latest cached progress event for a job, or None."""
    try:
        cached = redis_client.get(progress_key(job_id))
    except redis.RedisError as e:
        logger.warning(f"Progress cache unavailable for job {job_id}: {e}")
        return None
    if not cached:
        return None
    try:
        return json.loads(cached)
    except ValueError:
        logger.warning(f"Discarding malformed progress entry for job {job_id}")
        return None


def final_message(job_run: JobRun) -> Dict[str, Any]:
    message = {
        'job_id': job_run.job_id,
        'job_type': job_run.job_type,
        'status': job_run.status,
        'completed_at': job_run.completed_at.isoformat() if job_run.completed_at else None
    }
    if job_run.result is not None:
        message['result'] = job_run.result
    if job_run.error is not None:
        message['error'] = job_run.error
    return message


@router.websocket('/ws/import/{job_id}')
async def job_progress_stream(
    websocket: WebSocket,
    job_id: str,
    db: Session = Depends(get_db)
):
    """
    Relay progress for any background job until it finishes.

    Messages carry job_id and status, plus the progress event
    (stage, percent, message, completed, error) whenever it changed. The
    last message holds completed_at and the result or error.
    """
    await websocket.accept()

    job_run = db.query(JobRun).filter_by(job_id=job_id).first()
    if not job_run:
        await websocket.send_json({'job_id': job_id, 'error': f'Job {job_id} not found'})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    logger.info(f"Streaming progress of {job_run.job_type} job {job_id}")
    try:
        last_status = None
        last_progress = None
        while True:
            db.refresh(job_run)
            progress = read_progress(job_id)

            if job_run.status != last_status or (progress and progress != last_progress):
                update = {'job_id': job_id, 'status': job_run.status}
                if progress:
                    update['progress'] = progress
                await websocket.send_json(update)
                last_status, last_progress = job_run.status, progress

            if job_run.is_complete():
                await websocket.send_json(final_message(job_run))
                break

            await asyncio.sleep(POLL_INTERVAL_SECONDS)

        await websocket.close()
        logger.info(f"Job {job_id} finished with status {job_run.status}")

    except WebSocketDisconnect:
        logger.info(f"Client left the progress stream of job {job_id}")
