"""
Chooses the next passage to show.

Two pools are supported. A list of libraries is the network-backed path: the
engine orders libraries by a weighted random draw, fetches their passages one
library at a time and stops at the first unseen passage. A list of passages
(the local snapshot) is picked from directly, preferring the priority titles
four times out of five. Both paths avoid anything in the persisted
SeenHistory and fall back to an already-seen passage rather than nothing.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .errors import SessionExpired, StorageQuotaExceeded, UpstreamError
from .models import SEEN_HISTORY_LIMIT, Library, Passage, SeenHistory
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SEEN_HISTORY_KEY = "readfocus_seen_history"
MIN_SCAN_LIMIT = 10
MAX_SCAN_LIMIT = 30

PassageFetcher = Callable[[Library], List[Passage]]


class SeenHistoryStore:
    def __init__(self, store: KeyValueStore, key: str = SEEN_HISTORY_KEY, limit: int = SEEN_HISTORY_LIMIT):
        self.store = store
        self.key = key
        self.limit = limit

    def load(self) -> SeenHistory:
        raw = self.store.get(self.key)
        if not raw:
            return SeenHistory(limit=self.limit)
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Seen history under %s is corrupt; starting fresh", self.key)
            return SeenHistory(limit=self.limit)
        return SeenHistory.from_list([i for i in items if isinstance(i, str)], limit=self.limit)

    def save(self, history: SeenHistory) -> None:
        try:
            self.store.set(self.key, json.dumps(history.to_list(), ensure_ascii=False))
        except (OSError, StorageQuotaExceeded) as exc:
            # Losing history only risks a repeat; the pick itself stands.
            logger.warning("Failed to persist seen history: %s", exc)


@dataclass
class SelectionPolicy:
    priority_titles: List[str] = field(default_factory=list)
    blacklist_titles: List[str] = field(default_factory=list)
    scan_limit: int = 20
    priority_probability: float = 0.8
    priority_multiplier: float = 100.0

    def __post_init__(self) -> None:
        self.scan_limit = max(MIN_SCAN_LIMIT, min(MAX_SCAN_LIMIT, self.scan_limit))

    def is_priority(self, title: Optional[str]) -> bool:
        return bool(title) and any(t in title for t in self.priority_titles)

    def is_blacklisted(self, title: Optional[str]) -> bool:
        return bool(title) and any(t in title for t in self.blacklist_titles)


class SelectionEngine:
    def __init__(
        self,
        policy: Optional[SelectionPolicy] = None,
        history_store: Optional[SeenHistoryStore] = None,
        history: Optional[SeenHistory] = None,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy or SelectionPolicy()
        self.history_store = history_store
        if history is not None:
            self.history = history
        elif history_store is not None:
            self.history = history_store.load()
        else:
            self.history = SeenHistory()
        self.rng = rng or random.Random()

    def pick(
        self,
        pool: Union[Sequence[Library], Sequence[Passage]],
        fetch_passages: Optional[PassageFetcher] = None,
    ) -> Optional[Passage]:
        if not pool:
            return None
        if isinstance(pool[0], Library):
            if fetch_passages is None:
                raise ValueError("A passage fetcher is required to pick from libraries")
            return self.pick_from_libraries(pool, fetch_passages)
        return self.pick_from_passages(pool)

    def _record(self, passage: Passage) -> Passage:
        self.history.add(passage.text)
        if self.history_store is not None:
            self.history_store.save(self.history)
        return passage

    # region Library pools
    def weighted_order(self, libraries: Sequence[Library]) -> List[Library]:
        """
        Order libraries by ``weight * uniform()`` descending, where weight is
        the content count multiplied for priority titles. The first entry is the
        winning draw; the rest give the scan order for fallbacks.
        """
        scored: List[Tuple[float, int, Library]] = []
        uniform_weights = all(lib.content_count <= 0 for lib in libraries)
        for index, lib in enumerate(libraries):
            weight = 1.0 if uniform_weights else float(max(lib.content_count, 0))
            if self.policy.is_priority(lib.title):
                weight *= self.policy.priority_multiplier
            scored.append((weight * self.rng.random(), index, lib))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [lib for _, _, lib in scored]

    def pick_from_libraries(self, libraries: Sequence[Library], fetch_passages: PassageFetcher) -> Optional[Passage]:
        allowed = [lib for lib in libraries if not self.policy.is_blacklisted(lib.title)]
        if not allowed:
            return None

        with_content = [lib for lib in allowed if lib.has_content]
        candidates = self.weighted_order(with_content or allowed)
        priority_count = sum(1 for lib in candidates if self.policy.is_priority(lib.title))
        logger.info("Priority books found: %s, total candidates: %s", priority_count, len(candidates))

        backup: Optional[Passage] = None
        for lib in candidates[: self.policy.scan_limit]:
            passages = self._safe_fetch(lib, fetch_passages)
            if not passages:
                continue
            unseen = [p for p in passages if p.text not in self.history]
            if unseen:
                return self._record(self.rng.choice(unseen))
            if backup is None:
                backup = self.rng.choice(passages)

        if backup is not None:
            logger.info("All scanned passages were seen recently; reusing one")
            return self._record(backup)

        # Nothing in the sample produced content; force the richest library.
        richest = max(allowed, key=lambda lib: lib.content_count)
        logger.info("Fail-safe fetch of %s (%s items)", richest.title, richest.content_count)
        passages = self._safe_fetch(richest, fetch_passages)
        if passages:
            return self._record(self.rng.choice(passages))
        return None

    def _safe_fetch(self, library: Library, fetch_passages: PassageFetcher) -> List[Passage]:
        try:
            return fetch_passages(library)
        except SessionExpired:
            raise
        except UpstreamError as exc:
            logger.warning("Failed to fetch bookmarks for %s, trying next: %s", library.title, exc)
            return []

    # endregion

    # region Passage pools
    def pick_from_passages(self, passages: Sequence[Passage]) -> Optional[Passage]:
        allowed = [p for p in passages if not self.policy.is_blacklisted(p.title)]
        if not allowed:
            return None

        priority = [p for p in allowed if self.policy.is_priority(p.title)]
        general = [p for p in allowed if not self.policy.is_priority(p.title)]

        if priority and (not general or self.rng.random() < self.policy.priority_probability):
            order = [priority, general]
        else:
            order = [general, priority]

        for subset in order:
            unseen = [p for p in subset if p.text not in self.history]
            if unseen:
                return self._record(self.rng.choice(unseen))

        return self._record(self.rng.choice(order[0] or order[1]))

    # endregion
