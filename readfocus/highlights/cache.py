from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from .models import Passage
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "readfocus_all_bookmarks"


class MergeTier(Protocol):
    def read(self, library_id: str) -> List[Passage]:
        ...

    def write(self, passages: Iterable[Passage]) -> int:
        ...


class SnapshotStore:
    """
    Whole-dataset snapshot stored under a single fixed key. Written wholesale by
    a bulk sync and read wholesale for local selection.
    """

    def __init__(self, store: KeyValueStore, key: str = SNAPSHOT_KEY):
        self.store = store
        self.key = key

    def read(self) -> List[Passage]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.error("Snapshot under %s is not valid JSON; ignoring it", self.key)
            return []
        passages = []
        for item in items if isinstance(items, list) else []:
            try:
                passages.append(Passage.from_dict(item))
            except (KeyError, TypeError, ValueError):
                continue
        return passages

    def write(self, passages: Iterable[Passage]) -> int:
        """
        Replace the snapshot. Storage errors propagate to the caller; the store
        keeps its previous value when a write fails.
        """
        items = [p.to_dict() for p in passages]
        self.store.set(self.key, json.dumps(items, ensure_ascii=False))
        return len(items)


class TieredCache:
    """
    Two optional, independent accelerators in front of the network: the
    server-side merge tier (per library) and the client-side snapshot.
    """

    def __init__(self, merge_tier: Optional[MergeTier] = None, snapshot: Optional[SnapshotStore] = None):
        self.merge_tier = merge_tier
        self.snapshot = snapshot

    def read_library(self, library_id: str) -> List[Passage]:
        if self.merge_tier is None:
            return []
        try:
            return self.merge_tier.read(library_id)
        except (OSError, SQLAlchemyError) as exc:
            logger.error("Failed to read merge cache for book %s: %s", library_id, exc)
            return []

    def write_library(self, passages: List[Passage]) -> None:
        if self.merge_tier is None or not passages:
            return
        try:
            self.merge_tier.write(passages)
        except (OSError, SQLAlchemyError) as exc:
            logger.error("Failed to save passages to merge cache: %s", exc)

    def read_snapshot(self) -> List[Passage]:
        if self.snapshot is None:
            return []
        return self.snapshot.read()

    def write_snapshot(self, passages: List[Passage]) -> int:
        if self.snapshot is None:
            return 0
        return self.snapshot.write(passages)
