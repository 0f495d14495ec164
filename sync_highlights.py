"""
Example: sync every WeRead notebook into the local snapshot, then print one
passage picked from it.

Usage:
    python3 sync_highlights.py --data-root ./data
    python3 sync_highlights.py --enqueue          # hand the sync to an RQ worker
    python3 sync_highlights.py --worker           # run an RQ worker for sync jobs
"""

import argparse
import logging
import uuid
from pathlib import Path

from readfocus.highlights import (
    HighlightsConfig,
    HighlightsError,
    RQSyncQueue,
    SyncJobConfig,
    SyncProgress,
    build_service,
)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )


def print_progress(progress: SyncProgress) -> None:
    print(f"[{progress.processed}/{progress.total}] {progress.message}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--cookie", default=None, help="WeRead cookie; overrides CookieCloud and WEREAD_COOKIE")
    parser.add_argument("--data-root", default=None, type=Path, help="Directory for cache and snapshot files")
    parser.add_argument("--db", default=None, type=Path, help="SQLite DB path for the merge cache and sync jobs")
    parser.add_argument("--enqueue", action="store_true", help="Enqueue the sync on Redis instead of running it")
    parser.add_argument("--worker", action="store_true", help="Run an RQ worker for queued syncs")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    setup_logging(args.verbose)
    config = HighlightsConfig.from_env()
    if args.data_root:
        config.data_root = args.data_root
    if args.db:
        config.database_url = f"sqlite+pysqlite:///{args.db}"

    config.data_root.mkdir(parents=True, exist_ok=True)

    if args.enqueue and not config.database_url:
        # The worker process reads job records back from the same database.
        config.database_url = f"sqlite+pysqlite:///{config.data_root / 'readfocus.db'}"

    if args.worker:
        RQSyncQueue(config.redis_url).work()
        return

    service = build_service(config)

    if args.enqueue:
        job_id = f"sync-{uuid.uuid4().hex[:12]}"
        job_config = SyncJobConfig(
            data_root=str(config.data_root),
            database_url=config.database_url,
            weread_cookie=config.weread_cookie,
            cookiecloud_host=config.cookiecloud_host,
            cookiecloud_uuid=config.cookiecloud_uuid,
            cookiecloud_password=config.cookiecloud_password,
            priority_titles=config.priority_titles,
        )
        RQSyncQueue(config.redis_url).enqueue_sync_job(service, job_id, job_config, token=args.cookie)
        print(f"Enqueued sync job {job_id}")
        return

    try:
        result = service.sync(token=args.cookie, progress=print_progress)
    except HighlightsError as exc:
        print(f"Sync failed: {type(exc).__name__}: {exc}")
        raise SystemExit(1)

    print(
        f"Synced {result.libraries_synced}/{result.libraries_total} books, "
        f"{len(result.passages)} unique passages"
    )
    if result.failed_library_ids:
        print(f"Skipped books: {', '.join(result.failed_library_ids)}")
    if result.snapshot_error:
        print(f"Snapshot not saved: {result.snapshot_error}")

    passage = service.get_passage_from_snapshot()
    if passage is None:
        print("No highlights found.")
        return
    print()
    print(passage.text)
    print(f"  -- {passage.title or passage.library_id}" + (f", {passage.author}" if passage.author else ""))


if __name__ == "__main__":
    main()
