from __future__ import annotations

import hashlib
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

SEEN_HISTORY_LIMIT = 200


class PassageSource(str, Enum):
    HIGHLIGHT = "highlight"
    REVIEW = "review"
    BEST = "best"


class SyncJobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Credential:
    """
    Cookie-style credential: ordered name/value pairs rendered as "a=1; b=2".
    """

    pairs: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def parse(cls, text: Optional[str]) -> "Credential":
        pairs: List[Tuple[str, str]] = []
        for chunk in (text or "").split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            name, _, value = chunk.partition("=")
            name = name.strip()
            if name:
                pairs.append((name, value.strip()))
        return cls(tuple(pairs))

    def is_empty(self) -> bool:
        return not self.pairs

    def get(self, name: str) -> Optional[str]:
        for key, value in self.pairs:
            if key == name:
                return value
        return None

    def __str__(self) -> str:
        return "; ".join(f"{key}={value}" for key, value in self.pairs)


def parse_set_cookie(header_values: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Keep the leading name=value segment of each Set-Cookie header; attributes
    such as Path or Expires are dropped.
    """
    pairs: List[Tuple[str, str]] = []
    for raw in header_values:
        head = raw.split(";", 1)[0].strip()
        name, sep, value = head.partition("=")
        name = name.strip()
        if name and sep:
            pairs.append((name, value.strip()))
    return pairs


def merge_credential(old: Credential, updates: Iterable[Tuple[str, str]]) -> Credential:
    merged: "OrderedDict[str, str]" = OrderedDict(old.pairs)
    for name, value in updates:
        merged[name] = value
    return Credential(tuple(merged.items()))


@dataclass(frozen=True)
class Library:
    library_id: str
    title: str
    author: str = ""
    cover: str = ""
    note_count: int = 0
    bookmark_count: int = 0

    @property
    def content_count(self) -> int:
        return (self.note_count or 0) + (self.bookmark_count or 0)

    @property
    def has_content(self) -> bool:
        return self.content_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookId": self.library_id,
            "title": self.title,
            "author": self.author,
            "cover": self.cover,
            "noteCount": self.note_count,
            "bookmarkCount": self.bookmark_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Library":
        return cls(
            library_id=str(data["bookId"]),
            title=data.get("title") or "",
            author=data.get("author") or "",
            cover=data.get("cover") or "",
            note_count=int(data.get("noteCount") or 0),
            bookmark_count=int(data.get("bookmarkCount") or 0),
        )


def synthesize_passage_id(library_id: str, text: str) -> str:
    digest = hashlib.md5(f"{library_id}-{text.strip()}".encode("utf-8")).hexdigest()[:12]
    return f"gen-{digest}"


@dataclass
class Passage:
    passage_id: str
    library_id: str
    text: str
    create_time: float
    chapter_uid: Optional[int] = None
    title: Optional[str] = None
    author: Optional[str] = None
    note: Optional[str] = None
    source: PassageSource = PassageSource.HIGHLIGHT

    def __post_init__(self) -> None:
        self.text = (self.text or "").strip()
        if not self.text:
            raise ValueError("Passage text must not be empty")
        if not self.passage_id:
            self.passage_id = synthesize_passage_id(self.library_id, self.text)

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.library_id, self.text.strip())

    def with_library(self, library: Library) -> "Passage":
        return Passage(
            passage_id=self.passage_id,
            library_id=self.library_id,
            text=self.text,
            create_time=self.create_time,
            chapter_uid=self.chapter_uid,
            title=library.title,
            author=library.author,
            note=self.note,
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "bookmarkId": self.passage_id,
            "bookId": self.library_id,
            "markText": self.text,
            "createTime": self.create_time,
            "source": self.source.value,
        }
        if self.chapter_uid is not None:
            data["chapterUid"] = self.chapter_uid
        if self.title is not None:
            data["title"] = self.title
        if self.author is not None:
            data["author"] = self.author
        if self.note:
            data["noteText"] = self.note
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Passage":
        return cls(
            passage_id=str(data.get("bookmarkId") or ""),
            library_id=str(data.get("bookId") or ""),
            text=data.get("markText") or "",
            create_time=float(data.get("createTime") or 0),
            chapter_uid=data.get("chapterUid"),
            title=data.get("title"),
            author=data.get("author"),
            note=data.get("noteText"),
            source=PassageSource(data.get("source") or PassageSource.HIGHLIGHT.value),
        )


def dedupe_passages(passages: Iterable[Passage]) -> List[Passage]:
    """
    Collapse passages sharing (library id, trimmed text). Later entries win but
    keep the position of the first occurrence.
    """
    merged: Dict[Tuple[str, str], Passage] = {}
    for passage in passages:
        merged[passage.dedup_key] = passage
    return list(merged.values())


class SeenHistory:
    """
    Bounded insertion-ordered set of passage texts already shown. Re-adding a
    text moves it to the newest position; the oldest entries are evicted once
    the limit is exceeded.
    """

    def __init__(self, items: Optional[Iterable[str]] = None, limit: int = SEEN_HISTORY_LIMIT):
        self.limit = limit
        self._items: "OrderedDict[str, None]" = OrderedDict()
        for item in items or []:
            self.add(item)

    def add(self, text: str) -> None:
        key = text.strip()
        if not key:
            return
        if key in self._items:
            self._items.move_to_end(key)
        else:
            self._items[key] = None
        while len(self._items) > self.limit:
            self._items.popitem(last=False)

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and text.strip() in self._items

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> List[str]:
        return list(self._items.keys())

    @classmethod
    def from_list(cls, items: Iterable[str], limit: int = SEEN_HISTORY_LIMIT) -> "SeenHistory":
        return cls(items, limit=limit)


@dataclass
class CacheEntry:
    passages: List[Passage] = field(default_factory=list)
    last_updated: Optional[int] = None


@dataclass(frozen=True)
class SyncProgress:
    processed: int
    total: int
    message: str


@dataclass
class SyncResult:
    libraries_total: int
    libraries_synced: int
    passages: List[Passage] = field(default_factory=list)
    failed_library_ids: List[str] = field(default_factory=list)
    batch_sizes: List[int] = field(default_factory=list)
    snapshot_error: Optional[str] = None


@dataclass
class SyncJobRecord:
    id: str
    state: SyncJobState = SyncJobState.QUEUED
    processed: int = 0
    total: Optional[int] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)
