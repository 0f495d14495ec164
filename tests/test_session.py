import httpx
import pytest

from readfocus.highlights import Credential, PassageSource, SessionExpired, UpstreamError, UpstreamSessionClient


class FakeWeRead:
    """Routes MockTransport requests by path and records what was sent."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"errcode": -1})
        if callable(route):
            return route(request)
        return route

    def paths(self):
        return [r.url.path for r in self.requests]

    def cookie_sent_to(self, path):
        for request in self.requests:
            if request.url.path == path:
                return request.headers.get("cookie")
        return None


def homepage(set_cookie=None):
    headers = [("set-cookie", set_cookie)] if set_cookie else []
    return httpx.Response(200, text="<html></html>", headers=headers)


def make_session(fake, cookie="wr_vid=1; wr_skey=old"):
    client = httpx.Client(transport=httpx.MockTransport(fake))
    return UpstreamSessionClient(Credential.parse(cookie), client=client, sleep=lambda seconds: None)


NOTEBOOKS = {
    "books": [
        {"bookId": "b1", "book": {"title": "Book One", "author": "A"}, "noteCount": 2, "bookmarkCount": 3},
        {"bookId": 222, "book": {"title": "Book Two", "author": "B"}, "noteCount": 0, "bookmarkCount": 0},
    ]
}


def test_list_libraries_parses_notebooks():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(200, json=NOTEBOOKS)})
    libraries = make_session(fake).list_libraries()
    assert [lib.library_id for lib in libraries] == ["b1", "222"]
    assert libraries[0].title == "Book One"
    assert libraries[0].content_count == 5
    assert not libraries[1].has_content
    assert fake.paths() == ["/", "/api/user/notebook"]


def test_http_401_is_session_expired():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(401, json={"errmsg": "login"})})
    with pytest.raises(SessionExpired):
        make_session(fake).list_libraries()


def test_vendor_errcode_is_session_expired():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(200, json={"errcode": -2012})})
    with pytest.raises(SessionExpired):
        make_session(fake).list_libraries()


def test_other_vendor_errcode_with_http_200_is_upstream_error():
    fake = FakeWeRead(
        {"/": homepage(), "/api/user/notebook": httpx.Response(200, json={"errcode": -2010, "errmsg": "busy"})}
    )
    with pytest.raises(UpstreamError) as excinfo:
        make_session(fake).list_libraries()
    assert not isinstance(excinfo.value, SessionExpired)


def test_zero_errcode_is_success():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(200, json={"errcode": 0, **NOTEBOOKS})})
    assert len(make_session(fake).list_libraries()) == 2


def test_vendor_error_on_one_source_counts_as_failure():
    fake = FakeWeRead(
        {
            "/": homepage(),
            "/web/book/bookmarklist": httpx.Response(200, json={"errcode": -2010}),
            "/web/review/list": httpx.Response(200, json={"errcode": -2010}),
            "/web/book/bestbookmarks": httpx.Response(200, json={"errcode": -2010}),
        }
    )
    with pytest.raises(UpstreamError):
        make_session(fake).list_passages_for_library("b1")


def test_server_error_is_upstream_error():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(500, text="boom")})
    with pytest.raises(UpstreamError) as excinfo:
        make_session(fake).list_libraries()
    assert excinfo.value.status_code == 500
    assert not isinstance(excinfo.value, SessionExpired)


def test_set_cookie_rotates_credential():
    fake = FakeWeRead(
        {
            "/": homepage("wr_skey=fresh; Path=/; Domain=.weread.qq.com"),
            "/api/user/notebook": httpx.Response(200, json=NOTEBOOKS, headers=[("set-cookie", "wr_rt=r1; Path=/")]),
        }
    )
    session = make_session(fake)
    session.list_libraries()
    assert session.credential.get("wr_skey") == "fresh"
    assert session.credential.get("wr_vid") == "1"
    assert session.credential.get("wr_rt") == "r1"
    # The rotated value is sent on the very next request.
    assert "wr_skey=fresh" in fake.cookie_sent_to("/api/user/notebook")


def test_homepage_failure_is_not_fatal():
    def broken_home(request):
        raise httpx.ConnectError("no route", request=request)

    fake = FakeWeRead({"/": broken_home, "/api/user/notebook": httpx.Response(200, json=NOTEBOOKS)})
    assert len(make_session(fake).list_libraries()) == 2


def test_passages_merge_highlights_and_reviews():
    fake = FakeWeRead(
        {
            "/": homepage(),
            "/web/book/bookmarklist": httpx.Response(
                200,
                json={
                    "updated": [
                        {"bookmarkId": "m1", "markText": "First line", "createTime": 10, "chapterUid": 3},
                        {"bookmarkId": "m2", "markText": "  First line  ", "createTime": 11},
                        {"bookmarkId": "m3", "markText": "   ", "createTime": 12},
                    ]
                },
            ),
            "/web/review/list": httpx.Response(
                200,
                json={
                    "reviews": [
                        {"review": {"reviewId": "r1", "abstract": "Quoted", "content": "my thought", "createTime": 20}},
                        {"review": {"reviewId": "r2", "content": "thought without quote"}},
                    ]
                },
            ),
            "/web/book/bestbookmarks": httpx.Response(200, json={"items": [{"text": "popular"}]}),
        }
    )
    passages, total = make_session(fake).list_passages_for_library("b1")

    assert sorted(p.text for p in passages) == ["First line", "Quoted"]
    assert total == 3
    review = next(p for p in passages if p.text == "Quoted")
    assert review.source == PassageSource.REVIEW
    assert review.note == "my thought"
    assert "/web/book/bestbookmarks" not in fake.paths()

    review_request = next(r for r in fake.requests if r.url.path == "/web/review/list")
    assert review_request.url.params["listType"] == "4"
    assert review_request.url.params["bookId"] == "b1"


def test_best_bookmarks_used_when_personal_lists_empty():
    fake = FakeWeRead(
        {
            "/": homepage(),
            "/web/book/bookmarklist": httpx.Response(200, json={"updated": []}),
            "/web/review/list": httpx.Response(500, text="down"),
            "/web/book/bestbookmarks": httpx.Response(200, json={"items": [{"text": "popular"}, {"text": ""}]}),
        }
    )
    passages, _ = make_session(fake).list_passages_for_library("b1")
    assert [p.text for p in passages] == ["popular"]
    assert passages[0].source == PassageSource.BEST
    assert passages[0].passage_id.startswith("gen-")
    assert passages[0].create_time > 0


def test_all_sources_failing_raises_upstream_error():
    fake = FakeWeRead({"/": homepage()})
    with pytest.raises(UpstreamError):
        make_session(fake).list_passages_for_library("b1")


def test_session_expiry_on_secondary_source_propagates():
    fake = FakeWeRead(
        {
            "/": homepage(),
            "/web/book/bookmarklist": httpx.Response(200, json={"updated": []}),
            "/web/review/list": httpx.Response(401, json={}),
        }
    )
    with pytest.raises(SessionExpired):
        make_session(fake).list_passages_for_library("b1")


def test_malformed_payload_is_upstream_error():
    fake = FakeWeRead({"/": homepage(), "/api/user/notebook": httpx.Response(200, json={"books": "nope"})})
    with pytest.raises(UpstreamError):
        make_session(fake).list_libraries()
