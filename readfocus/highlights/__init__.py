"""
Highlights subsystem exports.
"""

from .aggregator import ContentAggregator
from .cache import SnapshotStore, TieredCache
from .config import HighlightsConfig
from .cookiecloud import EncryptedStoreClient, OpenSSLAesDecryptor
from .credentials import CredentialResolver
from .errors import (
    CredentialUnavailable,
    DecryptionFailure,
    HighlightsError,
    SessionExpired,
    StorageQuotaExceeded,
    UpstreamError,
)
from .job_queue import RQSyncQueue, SyncJobConfig, run_sync_job
from .models import (
    Credential,
    Library,
    Passage,
    PassageSource,
    SeenHistory,
    SyncJobRecord,
    SyncJobState,
    SyncProgress,
    SyncResult,
    merge_credential,
    parse_set_cookie,
)
from .repository import HighlightsRepository, InMemoryHighlightsRepository, SqlAlchemyHighlightsRepository
from .selection import SeenHistoryStore, SelectionEngine, SelectionPolicy
from .service import ReadingService, build_service
from .session import UpstreamSessionClient
from .storage import InMemoryKeyValueStore, LocalKeyValueStore, LocalPassageCache, StoragePaths
from .sync import BulkSyncer

__all__ = [
    "BulkSyncer",
    "ContentAggregator",
    "Credential",
    "CredentialResolver",
    "CredentialUnavailable",
    "DecryptionFailure",
    "EncryptedStoreClient",
    "HighlightsConfig",
    "HighlightsError",
    "HighlightsRepository",
    "InMemoryHighlightsRepository",
    "InMemoryKeyValueStore",
    "Library",
    "LocalKeyValueStore",
    "LocalPassageCache",
    "OpenSSLAesDecryptor",
    "Passage",
    "PassageSource",
    "RQSyncQueue",
    "ReadingService",
    "SeenHistory",
    "SeenHistoryStore",
    "SelectionEngine",
    "SelectionPolicy",
    "SessionExpired",
    "SnapshotStore",
    "SqlAlchemyHighlightsRepository",
    "StoragePaths",
    "StorageQuotaExceeded",
    "SyncJobConfig",
    "SyncJobRecord",
    "SyncJobState",
    "SyncProgress",
    "SyncResult",
    "TieredCache",
    "UpstreamError",
    "UpstreamSessionClient",
    "build_service",
    "merge_credential",
    "parse_set_cookie",
    "run_sync_job",
]
