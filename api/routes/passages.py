from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from readfocus.highlights import Library, ReadingService

from api.dependencies import get_service

router = APIRouter(tags=["passages"])


class BookIn(BaseModel):
    bookId: str
    title: str = ""
    author: str = ""
    cover: str = ""
    noteCount: int = 0
    bookmarkCount: int = 0


class PickRequest(BaseModel):
    books: List[BookIn] = []


@router.get("/bookmarks")
def list_bookmarks(
    bookId: str = "",
    x_weread_cookie: Optional[str] = Header(None),
    service: ReadingService = Depends(get_service),
):
    if not bookId.strip():
        raise HTTPException(status_code=400, detail="bookId required")
    passages = service.get_passages(bookId, token=x_weread_cookie)
    return {"updated": [p.to_dict() for p in passages]}


@router.post("/passages/pick")
def pick_passage(
    request: PickRequest,
    x_weread_cookie: Optional[str] = Header(None),
    service: ReadingService = Depends(get_service),
):
    pool = [Library.from_dict(book.model_dump()) for book in request.books]
    passage = service.get_passage(pool, token=x_weread_cookie)
    return {"bookmark": passage.to_dict() if passage else None}


@router.get("/passages/random")
def random_passage(service: ReadingService = Depends(get_service)):
    passage = service.get_passage_from_snapshot()
    return {"bookmark": passage.to_dict() if passage else None}
