from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .errors import SessionExpired, UpstreamError
from .models import Credential, Library, Passage, merge_credential, parse_set_cookie
from .wire import (
    SESSION_EXPIRED_ERRCODE,
    BestBookmarksResponse,
    BookmarkListResponse,
    NotebookListResponse,
    ReviewListResponse,
    parse_document,
    vendor_errcode,
)

logger = logging.getLogger(__name__)

WEREAD_BASE_URL = "https://weread.qq.com/"
WEREAD_NOTEBOOKS_URL = "https://weread.qq.com/api/user/notebook"
WEREAD_BOOKMARKLIST_URL = "https://weread.qq.com/web/book/bookmarklist"
WEREAD_REVIEWLIST_URL = "https://weread.qq.com/web/review/list"
WEREAD_BESTBOOKMARKS_URL = "https://weread.qq.com/web/book/bestbookmarks"

UPSTREAM_TIMEOUT_SECONDS = 60.0

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Connection": "keep-alive",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "cache-control": "no-cache",
    "pragma": "no-cache",
    "sec-ch-ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"macOS"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin",
    "Referer": "https://weread.qq.com/",
    "Origin": "https://weread.qq.com",
}

DOCUMENT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "sec-fetch-dest": "document",
    "sec-fetch-mode": "navigate",
}


class UpstreamSessionClient:
    """
    Wraps every call to WeRead for one cookie session. The held credential is
    rotated from Set-Cookie headers after each response. Instances keep mutable
    state and must not be shared between concurrent callers.
    """

    def __init__(
        self,
        credential: Credential,
        client: Optional[httpx.Client] = None,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
        delay_range: Tuple[float, float] = (0.5, 1.0),
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._credential = credential
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)
        self.timeout = timeout
        self.delay_range = delay_range
        self.sleep = sleep
        self.rng = rng or random.Random()

    @property
    def credential(self) -> Credential:
        return self._credential

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "UpstreamSessionClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        if extra:
            headers.update(extra)
        headers["Cookie"] = str(self._credential)
        return headers

    def update_credential(self, headers: httpx.Headers) -> None:
        updates = parse_set_cookie(headers.get_list("set-cookie"))
        if updates:
            self._credential = merge_credential(self._credential, updates)
            logger.debug("Rotated %s cookie(s): %s", len(updates), ", ".join(name for name, _ in updates))

    def prime_session(self) -> None:
        try:
            response = self.client.get(
                WEREAD_BASE_URL,
                headers=self._headers(DOCUMENT_HEADERS),
                timeout=self.timeout,
                follow_redirects=True,
            )
            self.update_credential(response.headers)
            for hop in response.history:
                self.update_credential(hop.headers)
        except httpx.HTTPError as exc:
            logger.warning("[WeReadApi] Homepage visit failed (non-fatal): %s", exc)

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON endpoint, rotating cookies and classifying failures.
        """
        try:
            response = self.client.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to {url} failed: {exc}") from exc
        self.update_credential(response.headers)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        errcode = vendor_errcode(payload)
        if response.status_code == 401 or errcode == SESSION_EXPIRED_ERRCODE:
            logger.error("[WeReadApi] Session expired (status %s) for %s", response.status_code, url)
            raise SessionExpired("WeChat Reading Session Expired")
        if response.status_code >= 400:
            raise UpstreamError(f"{url} returned HTTP {response.status_code}", status_code=response.status_code)
        if payload is None:
            raise UpstreamError(f"{url} returned a non-JSON body", status_code=response.status_code)
        if errcode:
            raise UpstreamError(f"{url} returned vendor errcode {errcode}", status_code=response.status_code)
        return payload

    def list_libraries(self) -> List[Library]:
        self.prime_session()
        self.sleep(self.rng.uniform(*self.delay_range))

        payload = self._get_json(WEREAD_NOTEBOOKS_URL)
        document = parse_document(NotebookListResponse, payload, "notebook list")
        libraries = [item.to_library() for item in document.books]
        logger.info("[WeReadApi] Listed %s notebooks", len(libraries))
        return libraries

    def list_passages_for_library(self, library_id: str) -> Tuple[List[Passage], int]:
        self.prime_session()

        failures = 0
        highlights, failed = self._fetch_optional("bookmarks", library_id, self._fetch_highlights)
        failures += failed
        reviews, failed = self._fetch_optional("reviews", library_id, self._fetch_reviews)
        failures += failed
        combined = [*highlights, *reviews]

        if not combined:
            logger.info("[WeReadApi] No personal notes found for %s. Trying best bookmarks...", library_id)
            combined, failed = self._fetch_optional("best bookmarks", library_id, self._fetch_best)
            failures += failed
            if failures == 3:
                raise UpstreamError(f"All content sources failed for book {library_id}")

        unique: Dict[str, Passage] = {}
        for passage in combined:
            unique[passage.text.strip()] = passage
        result = list(unique.values())
        logger.info("[WeReadApi] Book %s: final unique items count: %s", library_id, len(result))
        return result, len(combined)

    def _fetch_optional(
        self, label: str, library_id: str, fetch: Callable[[str], List[Passage]]
    ) -> Tuple[List[Passage], int]:
        """
        Run one content source; failures other than session expiry count as
        empty results.
        """
        try:
            return fetch(library_id), 0
        except SessionExpired:
            raise
        except UpstreamError as exc:
            logger.warning("[WeReadApi] Failed to fetch %s for %s: %s", label, library_id, exc)
            return [], 1

    def _fetch_highlights(self, library_id: str) -> List[Passage]:
        payload = self._get_json(WEREAD_BOOKMARKLIST_URL, params={"bookId": library_id})
        return parse_document(BookmarkListResponse, payload, "bookmark list").to_passages(library_id)

    def _fetch_reviews(self, library_id: str) -> List[Passage]:
        params = {
            "bookId": library_id,
            "listType": 4,
            "maxIdx": 0,
            "count": 0,
            "listMode": 2,
            "style": 2,
            "syncKey": 0,
        }
        payload = self._get_json(WEREAD_REVIEWLIST_URL, params=params)
        return parse_document(ReviewListResponse, payload, "review list").to_passages(library_id)

    def _fetch_best(self, library_id: str) -> List[Passage]:
        payload = self._get_json(WEREAD_BESTBOOKMARKS_URL, params={"bookId": library_id})
        return parse_document(BestBookmarksResponse, payload, "best bookmarks").to_passages(library_id)
