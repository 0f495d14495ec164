"""
Response shapes of the upstream endpoints. Documents are validated here, at
the network boundary, and converted into the core dataclasses.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import UpstreamError
from .models import Library, Passage, PassageSource

SESSION_EXPIRED_ERRCODE = -2012

T = TypeVar("T", bound="WireModel")


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class VendorError(WireModel):
    errcode: Optional[int] = None
    errmsg: Optional[str] = None


class NotebookBook(WireModel):
    title: str = ""
    author: Optional[str] = ""
    cover: Optional[str] = ""


class NotebookItem(WireModel):
    bookId: str
    book: NotebookBook = Field(default_factory=NotebookBook)
    noteCount: Optional[int] = 0
    bookmarkCount: Optional[int] = 0

    def to_library(self) -> Library:
        return Library(
            library_id=str(self.bookId),
            title=self.book.title or "",
            author=self.book.author or "",
            cover=self.book.cover or "",
            note_count=self.noteCount or 0,
            bookmark_count=self.bookmarkCount or 0,
        )


class NotebookListResponse(WireModel):
    books: List[NotebookItem] = Field(default_factory=list)


class BookmarkItem(WireModel):
    markText: Optional[str] = None
    createTime: Optional[float] = None
    bookmarkId: Optional[str] = None
    chapterUid: Optional[int] = None
    type: Optional[int] = None


class BookmarkListResponse(WireModel):
    updated: List[BookmarkItem] = Field(default_factory=list)

    def to_passages(self, library_id: str) -> List[Passage]:
        passages = []
        for item in self.updated:
            if not item.markText or not item.markText.strip():
                continue
            passages.append(
                Passage(
                    passage_id=item.bookmarkId or "",
                    library_id=library_id,
                    text=item.markText,
                    create_time=item.createTime or 0,
                    chapter_uid=item.chapterUid,
                    source=PassageSource.HIGHLIGHT,
                )
            )
        return passages


class ReviewBody(WireModel):
    reviewId: Optional[str] = None
    abstract: Optional[str] = None
    content: Optional[str] = None
    createTime: Optional[float] = None
    chapterUid: Optional[int] = None


class ReviewItem(WireModel):
    review: ReviewBody = Field(default_factory=ReviewBody)


class ReviewListResponse(WireModel):
    reviews: List[ReviewItem] = Field(default_factory=list)

    def to_passages(self, library_id: str) -> List[Passage]:
        passages = []
        for item in self.reviews:
            review = item.review
            # Thoughts without a quoted highlight carry no passage text.
            if not review.abstract or not review.abstract.strip():
                continue
            passages.append(
                Passage(
                    passage_id=review.reviewId or "",
                    library_id=library_id,
                    text=review.abstract,
                    create_time=review.createTime or 0,
                    chapter_uid=review.chapterUid,
                    note=review.content,
                    source=PassageSource.REVIEW,
                )
            )
        return passages


class BestBookmarkItem(WireModel):
    text: Optional[str] = None


class BestBookmarksResponse(WireModel):
    items: List[BestBookmarkItem] = Field(default_factory=list)

    def to_passages(self, library_id: str, now: Optional[float] = None) -> List[Passage]:
        created = now if now is not None else time.time()
        return [
            Passage(
                passage_id="",
                library_id=library_id,
                text=item.text,
                create_time=created,
                source=PassageSource.BEST,
            )
            for item in self.items
            if item.text and item.text.strip()
        ]


class CookieItem(WireModel):
    name: str
    value: str = ""
    domain: Optional[str] = None
    path: Optional[str] = None


class CookieCloudDocument(WireModel):
    encrypted: Optional[Any] = None
    cookie_data: Optional[Dict[str, Any]] = None


def parse_document(model: Type[T], payload: Any, what: str) -> T:
    """
    Validate an upstream JSON payload, translating schema errors to UpstreamError.
    """
    if not isinstance(payload, dict):
        raise UpstreamError(f"Unexpected {what} payload type: {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamError(f"Malformed {what} payload: {exc.error_count()} validation error(s)") from exc


def vendor_errcode(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict) or "errcode" not in payload:
        return None
    try:
        return VendorError.model_validate(payload).errcode
    except ValidationError:
        return None
