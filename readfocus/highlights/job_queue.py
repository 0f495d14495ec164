from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from redis import Redis
from rq import Queue, Worker

from .config import HighlightsConfig
from .models import SyncJobRecord, SyncJobState, SyncResult
from .service import ReadingService, build_service


@dataclass
class SyncJobConfig:
    data_root: str
    database_url: str
    weread_cookie: Optional[str] = None
    cookiecloud_host: Optional[str] = None
    cookiecloud_uuid: Optional[str] = None
    cookiecloud_password: Optional[str] = None
    priority_titles: List[str] = field(default_factory=list)
    batch_size: int = 3

    def to_highlights_config(self) -> HighlightsConfig:
        return HighlightsConfig(
            weread_cookie=self.weread_cookie,
            cookiecloud_host=self.cookiecloud_host,
            cookiecloud_uuid=self.cookiecloud_uuid,
            cookiecloud_password=self.cookiecloud_password,
            priority_titles=list(self.priority_titles),
            data_root=Path(self.data_root),
            database_url=self.database_url,
        )


def run_sync_job(job_id: str, config: SyncJobConfig, token: Optional[str] = None) -> SyncResult:
    """
    RQ task entrypoint. Builds the service from config and runs a bulk sync,
    recording progress on the job record.
    """
    service = build_service(config.to_highlights_config(), batch_size=config.batch_size)
    return service.sync(token=token, job_id=job_id)


class RQSyncQueue:
    """
    Redis-backed queue for bulk syncs. Workers are started by calling `work()`
    in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "sync-jobs"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_sync_job(self, service: ReadingService, job_id: str, config: SyncJobConfig, token: Optional[str] = None):
        """
        Register the job record, then enqueue it. The RQ job id mirrors the sync
        job id for idempotency.
        """
        service.repository.save_job(SyncJobRecord(id=job_id, state=SyncJobState.QUEUED))
        return self.queue.enqueue(run_sync_job, job_id, config, token, job_id=job_id, retry=None)

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
