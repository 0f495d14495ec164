import random

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from api.app import create_app
from api.dependencies import get_service
from readfocus.highlights import (
    BulkSyncer,
    ContentAggregator,
    Credential,
    CredentialResolver,
    HighlightsConfig,
    InMemoryHighlightsRepository,
    InMemoryKeyValueStore,
    Library,
    Passage,
    ReadingService,
    SeenHistory,
    SeenHistoryStore,
    SelectionEngine,
    SessionExpired,
    SnapshotStore,
    SyncJobState,
    TieredCache,
    UpstreamError,
    UpstreamSessionClient,
)

LIBRARIES = [
    Library(library_id="b1", title="Book One", author="A", note_count=1, bookmark_count=1),
    Library(library_id="b2", title="Book Two", author="B"),
]


class FakeAggregator:
    def __init__(self, error=None):
        self.error = error
        self.credentials = []
        self.passage_calls = []

    def get_libraries(self, credential):
        self.credentials.append(str(credential))
        if self.error:
            raise self.error
        return list(LIBRARIES)

    def get_passages(self, credential, library_id, library=None):
        passages, _ = self.fetch_passages(credential, library_id, library)
        return passages

    def fetch_passages(self, credential, library_id, library=None):
        self.credentials.append(str(credential))
        self.passage_calls.append(library_id)
        if self.error:
            raise self.error
        passages = [Passage(passage_id="m1", library_id=library_id, text="A highlighted line", create_time=5)]
        return ([p.with_library(library) for p in passages] if library else passages), credential


class FakeStoreClient:
    def fetch(self, host, store_id, password=None):
        return None


def make_service(aggregator, cookie="wr_vid=static"):
    repo = InMemoryHighlightsRepository()
    kv = InMemoryKeyValueStore()
    cache = TieredCache(merge_tier=repo, snapshot=SnapshotStore(kv))
    return ReadingService(
        resolver=CredentialResolver(HighlightsConfig(weread_cookie=cookie), store_client=FakeStoreClient()),
        aggregator=aggregator,
        cache=cache,
        engine=SelectionEngine(history_store=SeenHistoryStore(kv), rng=random.Random(0)),
        syncer=BulkSyncer(aggregator, cache),
        repository=repo,
    )


@pytest.fixture
def client_for():
    def build(service):
        app = create_app()
        app.dependency_overrides[get_service] = lambda: service
        return TestClient(app)

    return build


def test_notebooks_uses_header_cookie(client_for):
    aggregator = FakeAggregator()
    client = client_for(make_service(aggregator))

    response = client.get("/notebooks", headers={"X-Weread-Cookie": "wr_vid=header"})

    assert response.status_code == 200
    books = response.json()["books"]
    assert [b["bookId"] for b in books] == ["b1", "b2"]
    assert books[0]["noteCount"] == 1
    assert aggregator.credentials == ["wr_vid=header"]


def test_session_expired_maps_to_401(client_for):
    client = client_for(make_service(FakeAggregator(error=SessionExpired("expired"))))
    response = client.get("/notebooks")
    assert response.status_code == 401
    assert response.json() == {"error": "WeChat Reading Session Expired", "code": "SESSION_EXPIRED"}


def test_missing_credential_maps_to_401(client_for):
    client = client_for(make_service(FakeAggregator(), cookie=None))
    response = client.get("/notebooks")
    assert response.status_code == 401
    assert response.json()["code"] == "CREDENTIAL_UNAVAILABLE"


def test_upstream_error_maps_to_502(client_for):
    client = client_for(make_service(FakeAggregator(error=UpstreamError("timeout"))))
    response = client.get("/bookmarks", params={"bookId": "b1"})
    assert response.status_code == 502
    assert response.json()["code"] == "UPSTREAM_ERROR"


def test_bookmarks_requires_book_id(client_for):
    client = client_for(make_service(FakeAggregator()))
    assert client.get("/bookmarks").status_code == 400


def test_bookmarks_served_from_cache_after_first_fetch(client_for):
    aggregator = FakeAggregator()
    client = client_for(make_service(aggregator))

    first = client.get("/bookmarks", params={"bookId": "b1"}).json()["updated"]
    second = client.get("/bookmarks", params={"bookId": "b1"}).json()["updated"]

    assert first[0]["markText"] == "A highlighted line"
    assert second == first
    assert aggregator.passage_calls == ["b1"]


def test_cache_hit_needs_no_credential():
    aggregator = FakeAggregator()
    service = make_service(aggregator, cookie=None)
    service.cache.write_library([Passage(passage_id="c1", library_id="b1", text="cached", create_time=0)])

    passages = service.get_passages("b1", library=LIBRARIES[0])

    assert [p.text for p in passages] == ["cached"]
    assert passages[0].title == "Book One"
    assert aggregator.credentials == []


def test_pick_returns_passage_with_title(client_for):
    client = client_for(make_service(FakeAggregator()))
    books = [lib.to_dict() for lib in LIBRARIES]

    response = client.post("/passages/pick", json={"books": books})

    bookmark = response.json()["bookmark"]
    assert bookmark["markText"] == "A highlighted line"
    assert bookmark["title"] == "Book One"


def test_pick_with_empty_pool_returns_null(client_for):
    client = client_for(make_service(FakeAggregator()))
    assert client.post("/passages/pick", json={"books": []}).json() == {"bookmark": None}


def test_sync_job_runs_in_background(client_for):
    service = make_service(FakeAggregator())
    client = client_for(service)

    job_id = client.post("/sync").json()["job_id"]
    job = client.get(f"/sync/{job_id}").json()

    assert job["state"] == SyncJobState.COMPLETED.value
    assert job["processed"] == job["total"] == 1
    assert client.get("/passages/random").json()["bookmark"]["markText"] == "A highlighted line"


def test_sync_job_records_missing_credential(client_for):
    service = make_service(FakeAggregator(), cookie=None)
    client = client_for(service)

    job_id = client.post("/sync").json()["job_id"]
    job = client.get(f"/sync/{job_id}").json()

    assert job["state"] == SyncJobState.FAILED.value
    assert job["error_message"]


def test_unknown_sync_job_is_404(client_for):
    client = client_for(make_service(FakeAggregator()))
    assert client.get("/sync/nope").status_code == 404


def test_token_credential_parsed_once_per_pick():
    aggregator = FakeAggregator()
    service = make_service(aggregator)
    service.get_passage(LIBRARIES, token="wr_vid=token")
    assert aggregator.credentials == [str(Credential.parse("wr_vid=token"))]


def test_pick_sends_rotated_cookie_to_next_library():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/web/book/bookmarklist":
            book_id = request.url.params["bookId"]
            return httpx.Response(
                200,
                json={"updated": [{"bookmarkId": f"{book_id}-m", "markText": f"seen {book_id}"}]},
                headers=[("set-cookie", f"wr_skey=rotated-{book_id}; Path=/")],
            )
        if request.url.path == "/web/review/list":
            return httpx.Response(200, json={"reviews": []})
        return httpx.Response(200, text="<html></html>")

    http = httpx.Client(transport=httpx.MockTransport(handler))
    aggregator = ContentAggregator(
        session_factory=lambda cred: UpstreamSessionClient(cred, client=http, sleep=lambda seconds: None)
    )
    config = HighlightsConfig(weread_cookie="wr_vid=1; wr_skey=old")
    service = ReadingService(
        resolver=CredentialResolver(config, store_client=FakeStoreClient()),
        aggregator=aggregator,
        cache=TieredCache(),
        # Every passage is already seen, so the scan visits both libraries.
        engine=SelectionEngine(history=SeenHistory(["seen b1", "seen b2"]), rng=random.Random(0)),
        syncer=BulkSyncer(aggregator, TieredCache()),
        repository=InMemoryHighlightsRepository(),
    )
    pool = [
        Library(library_id="b1", title="One", note_count=1),
        Library(library_id="b2", title="Two", note_count=1),
    ]

    assert service.get_passage(pool) is not None

    fetches = [r for r in requests if r.url.path == "/web/book/bookmarklist"]
    assert len(fetches) == 2
    first_book = fetches[0].url.params["bookId"]
    assert "wr_skey=old" in fetches[0].headers["cookie"]
    assert f"wr_skey=rotated-{first_book}" in fetches[1].headers["cookie"]


class BrokenMergeTier:
    def read(self, library_id):
        raise SQLAlchemyError("database is locked")

    def write(self, passages):
        raise SQLAlchemyError("database is locked")


def test_merge_tier_database_errors_do_not_fail_fetch():
    aggregator = FakeAggregator()
    service = make_service(aggregator)
    service.cache = TieredCache(merge_tier=BrokenMergeTier())

    passages = service.get_passages("b1", library=LIBRARIES[0])

    assert [p.text for p in passages] == ["A highlighted line"]
    assert aggregator.passage_calls == ["b1"]
