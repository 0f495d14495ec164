import pytest

from readfocus.highlights import (
    Credential,
    CredentialResolver,
    CredentialUnavailable,
    HighlightsConfig,
    Passage,
    SeenHistory,
    merge_credential,
    parse_set_cookie,
)
from readfocus.highlights.models import dedupe_passages


class FakeStoreClient:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def fetch(self, host, store_id, password=None):
        self.calls.append((host, store_id, password))
        return self.result


def test_merge_credential_overrides_and_preserves_order():
    old = Credential.parse("wr_vid=1; wr_skey=old; wr_name=x")
    merged = merge_credential(old, [("wr_skey", "new"), ("wr_rt", "r")])
    assert str(merged) == "wr_vid=1; wr_skey=new; wr_name=x; wr_rt=r"
    # The input value is untouched.
    assert old.get("wr_skey") == "old"


def test_parse_set_cookie_keeps_leading_pair_only():
    pairs = parse_set_cookie(
        [
            "wr_skey=abc==; Path=/; Domain=.weread.qq.com; HttpOnly",
            "wr_rt=token; Expires=Wed, 21 Oct 2026 07:28:00 GMT",
            "garbage-without-equals",
        ]
    )
    assert pairs == [("wr_skey", "abc=="), ("wr_rt", "token")]


def test_credential_parse_skips_blank_chunks():
    cred = Credential.parse(" a=1 ;; b = 2 ; ")
    assert cred.pairs == (("a", "1"), ("b", "2"))
    assert Credential.parse("   ").is_empty()
    assert Credential.parse(None).is_empty()


def test_passage_text_is_trimmed_and_id_synthesized():
    p = Passage(passage_id="", library_id="b1", text="  hello world \n", create_time=1)
    assert p.text == "hello world"
    assert p.passage_id.startswith("gen-")
    same = Passage(passage_id="", library_id="b1", text="hello world", create_time=2)
    assert same.passage_id == p.passage_id

    with pytest.raises(ValueError):
        Passage(passage_id="x", library_id="b1", text="   ", create_time=0)


def test_dedupe_passages_by_library_and_trimmed_text():
    passages = [
        Passage(passage_id="1", library_id="b1", text="alpha", create_time=1),
        Passage(passage_id="2", library_id="b1", text=" alpha ", create_time=2),
        Passage(passage_id="3", library_id="b2", text="alpha", create_time=3),
    ]
    result = dedupe_passages(passages)
    assert [p.passage_id for p in result] == ["2", "3"]
    keys = [p.dedup_key for p in result]
    assert len(keys) == len(set(keys))


def test_seen_history_evicts_oldest_beyond_cap():
    history = SeenHistory()
    for i in range(201):
        history.add(f"passage {i}")
    assert len(history) == 200
    assert "passage 0" not in history
    assert "passage 1" in history
    assert "passage 200" in history


def test_seen_history_readd_refreshes_position():
    history = SeenHistory(limit=3)
    for text in ["a", "b", "c"]:
        history.add(text)
    history.add("a")
    history.add("d")
    assert history.to_list() == ["c", "a", "d"]


def test_resolver_prefers_supplied_token():
    store = FakeStoreClient(result=Credential.parse("from=cloud"))
    config = HighlightsConfig(
        weread_cookie="from=static",
        cookiecloud_host="http://cc",
        cookiecloud_uuid="u",
    )
    resolver = CredentialResolver(config, store_client=store)
    assert str(resolver.resolve("from=token")) == "from=token"
    assert resolver.last_source == "token"
    assert store.calls == []


def test_resolver_uses_cookiecloud_before_static():
    store = FakeStoreClient(result=Credential.parse("from=cloud"))
    config = HighlightsConfig(
        weread_cookie="from=static",
        cookiecloud_host="http://cc",
        cookiecloud_uuid="u",
        cookiecloud_password="pw",
    )
    resolver = CredentialResolver(config, store_client=store)
    assert str(resolver.resolve("   ")) == "from=cloud"
    assert store.calls == [("http://cc", "u", "pw")]


def test_resolver_falls_back_to_static_when_cloud_empty():
    store = FakeStoreClient(result=None)
    config = HighlightsConfig(weread_cookie="from=static", cookiecloud_host="http://cc", cookiecloud_uuid="u")
    resolver = CredentialResolver(config, store_client=store)
    assert str(resolver.resolve()) == "from=static"
    assert resolver.last_source == "static"
    assert len(store.calls) == 1


def test_resolver_skips_cloud_when_not_configured():
    store = FakeStoreClient(result=Credential.parse("from=cloud"))
    resolver = CredentialResolver(HighlightsConfig(weread_cookie="from=static"), store_client=store)
    assert str(resolver.resolve()) == "from=static"
    assert store.calls == []


def test_resolver_raises_when_nothing_available():
    resolver = CredentialResolver(HighlightsConfig(), store_client=FakeStoreClient())
    with pytest.raises(CredentialUnavailable):
        resolver.resolve()


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("WEREAD_COOKIE", "wr_vid=9")
    monkeypatch.setenv("READFOCUS_PRIORITY_TITLES", "Book A, Book B ,")
    monkeypatch.setenv("READFOCUS_SCAN_LIMIT", "15")
    monkeypatch.setenv("READFOCUS_DATA_ROOT", str(tmp_path))
    monkeypatch.delenv("COOKIECLOUD_HOST", raising=False)
    config = HighlightsConfig.from_env()
    assert config.weread_cookie == "wr_vid=9"
    assert config.priority_titles == ["Book A", "Book B"]
    assert config.scan_limit == 15
    assert config.data_root == tmp_path
    assert not config.cookiecloud_configured
