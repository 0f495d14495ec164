from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from readfocus.highlights import HighlightsError, ReadingService, SyncJobRecord, SyncJobState

from api.dependencies import build_job_id, get_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("")
def start_sync(
    background_tasks: BackgroundTasks,
    x_weread_cookie: Optional[str] = Header(None),
    service: ReadingService = Depends(get_service),
):
    job_id = build_job_id()
    service.repository.save_job(SyncJobRecord(id=job_id, state=SyncJobState.QUEUED))
    background_tasks.add_task(_run_sync, service, job_id, x_weread_cookie)
    return {"job_id": job_id}


@router.get("/{job_id}")
def get_sync_job(job_id: str, service: ReadingService = Depends(get_service)):
    job = service.repository.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Sync job not found: {job_id}")
    return {
        "id": job.id,
        "state": job.state,
        "processed": job.processed,
        "total": job.total,
        "message": job.message,
        "error_message": job.error_message,
    }


def _run_sync(service: ReadingService, job_id: str, token: Optional[str]) -> None:
    try:
        service.sync(token=token, job_id=job_id)
    except HighlightsError as exc:
        # The job record carries the failure for pollers.
        logger.error("Sync job %s failed: %s", job_id, exc)
        service.repository.update_job_progress(job_id, state=SyncJobState.FAILED, error_message=str(exc))
