from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from .errors import StorageQuotaExceeded
from .models import CacheEntry, Passage, dedupe_passages

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    @property
    def cache_file(self) -> Path:
        return self.root / "bookmarks-cache.json"

    @property
    def kv_dir(self) -> Path:
        return self.root / "kv"

    def kv_path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.kv_dir / f"{safe}.json"


def _atomic_write_text(target: Path, payload: str) -> None:
    """
    Write through a sibling temp file and rename, so readers never observe a
    half-written file and a failed write leaves the old content in place.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class InMemoryKeyValueStore:
    """
    Dict-backed store for tests and ephemeral runs. Honors an optional quota so
    quota handling can be exercised without touching the filesystem.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            others = sum(len(v.encode("utf-8")) for k, v in self.data.items() if k != key)
            if others + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageQuotaExceeded(f"Writing {key!r} exceeds quota of {self.quota_bytes} bytes")
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class LocalKeyValueStore:
    """
    One JSON file per key under the data root; the local stand-in for browser
    storage. Writes are atomic and checked against an optional byte quota.
    """

    def __init__(self, storage_paths: StoragePaths, quota_bytes: Optional[int] = None):
        self.paths = storage_paths
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        path = self.paths.kv_path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        target = self.paths.kv_path(key)
        if self.quota_bytes is not None:
            used = self._used_bytes(exclude=target)
            if used + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageQuotaExceeded(f"Writing {key!r} exceeds quota of {self.quota_bytes} bytes")
        _atomic_write_text(target, value)

    def remove(self, key: str) -> None:
        self.paths.kv_path(key).unlink(missing_ok=True)

    def _used_bytes(self, exclude: Path) -> int:
        if not self.paths.kv_dir.exists():
            return 0
        return sum(p.stat().st_size for p in self.paths.kv_dir.glob("*.json") if p != exclude)


class LocalPassageCache:
    """
    Server-side merge tier kept as a single JSON file:
    {"passages": [...], "lastUpdated": <epoch ms>}.
    Writes merge by (library id, trimmed text) and never drop entries.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def load(self) -> CacheEntry:
        """
        Read the cache file. An unparseable file is moved aside so the next
        write starts fresh without destroying it; OSError propagates.
        """
        path = self.paths.cache_file
        if not path.exists():
            return CacheEntry()
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as exc:
            self._set_aside(path, f"not valid JSON ({exc})")
            return CacheEntry()
        if not isinstance(data, dict):
            self._set_aside(path, "unexpected shape")
            return CacheEntry()
        passages = []
        for raw in data.get("passages") or []:
            try:
                passages.append(Passage.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed cached passage in %s", path)
        return CacheEntry(passages=passages, last_updated=data.get("lastUpdated"))

    def _set_aside(self, path: Path, reason: str) -> Path:
        target = path.with_name(f"{path.name}.corrupt-{int(time.time() * 1000)}")
        os.replace(path, target)
        logger.error("Local cache %s is unreadable (%s); moved it to %s", path, reason, target)
        return target

    def read(self, library_id: str) -> List[Passage]:
        return [p for p in self.load().passages if p.library_id == library_id]

    def write(self, passages: Iterable[Passage]) -> int:
        existing = self.load().passages
        merged = dedupe_passages([*existing, *passages])
        payload = {
            "passages": [p.to_dict() for p in merged],
            "lastUpdated": int(time.time() * 1000),
        }
        _atomic_write_text(self.paths.cache_file, json.dumps(payload, ensure_ascii=False, indent=2))
        logger.info("[Cache] Saved %s passages to %s", len(merged), self.paths.cache_file)
        return len(merged)
