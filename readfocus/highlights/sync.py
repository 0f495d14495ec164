from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence

from .aggregator import ContentAggregator
from .cache import TieredCache
from .errors import SessionExpired, StorageQuotaExceeded, UpstreamError
from .models import Credential, Library, Passage, SyncJobState, SyncProgress, SyncResult, dedupe_passages
from .repository import HighlightsRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

DEFAULT_BATCH_SIZE = 3


class BulkSyncer:
    """
    Fetches every content-bearing library in fixed-size parallel batches and
    stores the result wholesale in the snapshot tier (and merged into the merge
    tier). Each batch is awaited in full before the next one starts.
    """

    def __init__(
        self,
        aggregator: ContentAggregator,
        cache: TieredCache,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.batch_size = batch_size

    def sync(
        self,
        credential: Credential,
        libraries: Optional[Sequence[Library]] = None,
        progress: Optional[ProgressCallback] = None,
        job_id: Optional[str] = None,
        repository: Optional[HighlightsRepository] = None,
    ) -> SyncResult:
        tracker = _JobTracker(repository, job_id)
        tracker.update(state=SyncJobState.RUNNING)
        try:
            result = self._sync(credential, libraries, progress, tracker)
        except Exception as exc:  # noqa: BLE001
            tracker.update(state=SyncJobState.FAILED, error_message=str(exc))
            raise
        tracker.update(state=SyncJobState.COMPLETED, message=f"Synced {len(result.passages)} passages")
        return result

    def _sync(
        self,
        credential: Credential,
        libraries: Optional[Sequence[Library]],
        progress: Optional[ProgressCallback],
        tracker: "_JobTracker",
    ) -> SyncResult:
        if libraries is None:
            libraries = self.aggregator.get_libraries(credential)
        targets = [lib for lib in libraries if lib.has_content]
        total = len(targets)
        tracker.update(total=total, processed=0)
        logger.info("Bulk sync: %s of %s books have content", total, len(libraries))

        result = SyncResult(libraries_total=total, libraries_synced=0)
        collected: List[Passage] = []
        processed = 0

        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for batch in self._batches(targets):
                result.batch_sizes.append(len(batch))
                futures = {
                    pool.submit(self.aggregator.get_passages, credential, lib.library_id, lib): lib for lib in batch
                }
                for future in as_completed(futures):
                    lib = futures[future]
                    processed += 1
                    try:
                        passages = future.result()
                    except SessionExpired:
                        raise
                    except UpstreamError as exc:
                        logger.warning("Bulk sync skipped %s (%s): %s", lib.title, lib.library_id, exc)
                        result.failed_library_ids.append(lib.library_id)
                        message = f"Failed {lib.title}"
                    else:
                        collected.extend(passages)
                        result.libraries_synced += 1
                        message = f"Synced {lib.title} ({len(passages)})"
                    tracker.update(processed=processed, message=message)
                    if progress is not None:
                        progress(SyncProgress(processed=processed, total=total, message=message))

        result.passages = dedupe_passages(collected)
        self._store(result)
        return result

    def _batches(self, libraries: Sequence[Library]) -> Iterator[List[Library]]:
        for start in range(0, len(libraries), self.batch_size):
            yield list(libraries[start : start + self.batch_size])

    def _store(self, result: SyncResult) -> None:
        try:
            count = self.cache.write_snapshot(result.passages)
            logger.info("Bulk sync stored snapshot of %s passages", count)
        except (StorageQuotaExceeded, OSError) as exc:
            logger.error("Snapshot write failed, previous snapshot kept: %s", exc)
            result.snapshot_error = str(exc)
        self.cache.write_library(result.passages)


class _JobTracker:
    def __init__(self, repository: Optional[HighlightsRepository], job_id: Optional[str]):
        self.repository = repository
        self.job_id = job_id

    def update(self, **values) -> None:
        if self.repository is None or self.job_id is None:
            return
        if values.get("state") == SyncJobState.RUNNING:
            job = self.repository.get_job(self.job_id)
            if job and job.started_at is None:
                job.started_at = datetime.utcnow()
                self.repository.save_job(job)
        self.repository.update_job_progress(self.job_id, **values)
