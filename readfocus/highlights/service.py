from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .aggregator import ContentAggregator
from .cache import SnapshotStore, TieredCache
from .config import HighlightsConfig
from .credentials import CredentialResolver
from .models import Credential, Library, Passage, SyncResult
from .repository import HighlightsRepository, InMemoryHighlightsRepository, SqlAlchemyHighlightsRepository
from .selection import SelectionEngine, SelectionPolicy, SeenHistoryStore
from .storage import LocalKeyValueStore, LocalPassageCache, StoragePaths
from .sync import BulkSyncer, ProgressCallback

logger = logging.getLogger(__name__)


class _RequestCredential:
    """
    Credential for one inbound request: resolved on first use, then replaced
    by each rotated value so later fetches send the newest cookies.
    """

    def __init__(self, resolver: CredentialResolver, token: Optional[str]):
        self.resolver = resolver
        self.token = token
        self._credential: Optional[Credential] = None

    def get(self) -> Credential:
        if self._credential is None:
            self._credential = self.resolver.resolve(self.token)
        return self._credential

    def rotate(self, credential: Credential) -> None:
        self._credential = credential


class ReadingService:
    """
    Request/response facade the presentation layer talks to. Credentials are
    resolved lazily, only once a call actually needs the network.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        aggregator: ContentAggregator,
        cache: TieredCache,
        engine: SelectionEngine,
        syncer: BulkSyncer,
        repository: HighlightsRepository,
    ):
        self.resolver = resolver
        self.aggregator = aggregator
        self.cache = cache
        self.engine = engine
        self.syncer = syncer
        self.repository = repository

    def get_libraries(self, token: Optional[str] = None) -> List[Library]:
        return self.aggregator.get_libraries(self.resolver.resolve(token))

    def get_passages(
        self,
        library_id: str,
        token: Optional[str] = None,
        library: Optional[Library] = None,
    ) -> List[Passage]:
        return self._passages(library_id, library, _RequestCredential(self.resolver, token))

    def get_passage(self, pool: Sequence[Library], token: Optional[str] = None) -> Optional[Passage]:
        credential = _RequestCredential(self.resolver, token)
        return self.engine.pick(
            list(pool),
            fetch_passages=lambda lib: self._passages(lib.library_id, lib, credential),
        )

    def _passages(
        self,
        library_id: str,
        library: Optional[Library],
        credential: _RequestCredential,
    ) -> List[Passage]:
        cached = self.cache.read_library(library_id)
        if cached:
            logger.info("Serving %s bookmarks from local cache for book %s", len(cached), library_id)
            if library is not None:
                cached = [p if p.title else p.with_library(library) for p in cached]
            return cached

        passages, rotated = self.aggregator.fetch_passages(credential.get(), library_id, library)
        credential.rotate(rotated)
        self.cache.write_library(passages)
        return passages

    def get_passage_from_snapshot(self) -> Optional[Passage]:
        return self.engine.pick(self.cache.read_snapshot())

    def sync(
        self,
        token: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        job_id: Optional[str] = None,
    ) -> SyncResult:
        credential = self.resolver.resolve(token)
        return self.syncer.sync(credential, progress=progress, job_id=job_id, repository=self.repository)


def build_service(config: HighlightsConfig, batch_size: int = 3) -> ReadingService:
    paths = StoragePaths(config.data_root)
    if config.database_url:
        repository: HighlightsRepository = SqlAlchemyHighlightsRepository(config.database_url)
        merge_tier = repository
    else:
        repository = InMemoryHighlightsRepository()
        merge_tier = LocalPassageCache(paths)

    kv = LocalKeyValueStore(paths)
    cache = TieredCache(merge_tier=merge_tier, snapshot=SnapshotStore(kv))
    policy = SelectionPolicy(
        priority_titles=config.priority_titles,
        blacklist_titles=config.blacklist_titles,
        scan_limit=config.scan_limit,
    )
    aggregator = ContentAggregator()
    return ReadingService(
        resolver=CredentialResolver(config),
        aggregator=aggregator,
        cache=cache,
        engine=SelectionEngine(policy=policy, history_store=SeenHistoryStore(kv)),
        syncer=BulkSyncer(aggregator, cache, batch_size=batch_size),
        repository=repository,
    )
