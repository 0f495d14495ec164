from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from readfocus.highlights import ReadingService

from api.dependencies import get_service

router = APIRouter(tags=["notebooks"])


@router.get("/notebooks")
def list_notebooks(
    x_weread_cookie: Optional[str] = Header(None),
    service: ReadingService = Depends(get_service),
):
    libraries = service.get_libraries(token=x_weread_cookie)
    return {"books": [lib.to_dict() for lib in libraries]}
