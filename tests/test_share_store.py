"""
Tests for the share store and share payload sanitization.
"""

import json
from unittest.mock import Mock

import pytest
from requests.exceptions import ConnectionError

from checkup.config import ShareConfig
from checkup.errors import StoreFailure
from checkup.share_store import (
    KVClient,
    SharePayload,
    ShareStore,
    ShareTopFix,
    sanitize_share_payload,
)


def make_payload(categories=4, fixes=3) -> SharePayload:
    return SharePayload(
        url="https://example.com/",
        fetched_at="2026-01-01T00:00:00.000Z",
        rubric_version="1.0",
        score=72,
        grade="Good",
        confidence="Medium",
        categories=[
            {"id": f"cat-{i}", "name": f"Category {i}", "score": 20, "max": 25}
            for i in range(categories)
        ],
        top_fixes=[
            ShareTopFix(title=f"Fix {i}", why="Found something", how="Do something", snippet="<b>x</b>")
            for i in range(fixes)
        ],
    )


@pytest.fixture
def memory_only_store() -> ShareStore:
    return ShareStore(ShareConfig(kv_url="", kv_token=""))


class TestSanitize:

    def test_caps_lists_and_text(self):
        payload = make_payload(categories=6, fixes=10)
        payload.top_fixes[0] = ShareTopFix(
            title="t" * 500, why="w" * 500, how="h" * 500, snippet="s" * 1000
        )

        clean = sanitize_share_payload(payload)

        assert len(clean.categories) == 4
        assert len(clean.top_fixes) == 7
        first = clean.top_fixes[0]
        assert (len(first.title), len(first.why), len(first.how), len(first.snippet)) == (140, 300, 300, 400)

    def test_drops_unknown_category_fields(self):
        payload = make_payload(categories=1)
        payload.categories[0]["secret"] = "nope"
        assert "secret" not in sanitize_share_payload(payload).categories[0]


class TestMemoryFallback:

    def test_round_trip(self, memory_only_store):
        record = memory_only_store.create(make_payload(categories=4, fixes=7))

        assert record.persistent is False
        assert len(record.id) == 12
        loaded = memory_only_store.get(record.id)
        assert loaded is not None
        assert loaded.score == 72
        assert len(loaded.categories) <= 4
        assert len(loaded.top_fixes) <= 7
        assert loaded.to_dict()["topFixes"][0] == {
            "title": "Fix 0", "why": "Found something", "how": "Do something", "snippet": "<b>x</b>",
        }

    def test_ids_are_unique(self, memory_only_store):
        ids = {memory_only_store.create(make_payload()).id for _ in range(20)}
        assert len(ids) == 20

    def test_forced_expiry_is_not_found(self, memory_only_store):
        record = memory_only_store.create(make_payload())
        memory_only_store.memory.expire(memory_only_store.key_for(record.id))
        assert memory_only_store.get(record.id) is None

    def test_unknown_id_is_not_found(self, memory_only_store):
        assert memory_only_store.get("doesnotexist") is None


class TestKVBackend:

    def make_store(self, session) -> ShareStore:
        config = ShareConfig(kv_url="https://kv.example/", kv_token="secret")
        return ShareStore(config, kv=KVClient(config, session=session))

    def test_create_writes_with_bearer_token(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value={"result": "OK"}))
        store = self.make_store(session)

        record = store.create(make_payload(), ttl_seconds=3600)

        assert record.persistent is True
        url = session.get.call_args.args[0]
        assert url.startswith(f"https://kv.example/SET/aio%3A{record.id}/")
        assert url.endswith("/EX/3600")
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer secret"}

    def test_get_reads_from_kv(self):
        stored = json.dumps(make_payload().to_dict())
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value={"result": stored}))
        store = self.make_store(session)

        loaded = store.get("abcdef123456")

        assert loaded.url == "https://example.com/"
        assert "GET/aio%3Aabcdef123456" in session.get.call_args.args[0]

    def test_write_failure_falls_back_to_memory(self):
        session = Mock()
        session.get.side_effect = ConnectionError("down")
        store = self.make_store(session)

        record = store.create(make_payload())

        assert record.persistent is False
        assert store.get(record.id).score == 72

    def test_error_status_falls_back_to_memory(self):
        session = Mock()
        session.get.return_value = Mock(status_code=500)
        store = self.make_store(session)

        record = store.create(make_payload())

        assert record.persistent is False
        assert store.memory.get(store.key_for(record.id)) is not None

    def test_malformed_remote_value_falls_back(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value={"result": "{not json"}))
        store = self.make_store(session)
        assert store.get("abcdef123456") is None

    def test_missing_config_raises_store_failure(self):
        client = KVClient(ShareConfig(kv_url="", kv_token=""), session=Mock())
        with pytest.raises(StoreFailure):
            client.command("GET", "aio:x")

    def test_non_object_response_falls_back_to_memory(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value=["OK"]))
        store = self.make_store(session)

        record = store.create(make_payload())

        assert record.persistent is False
        assert store.get(record.id).score == 72

    def test_non_object_response_is_a_store_failure(self):
        session = Mock()
        session.get.return_value = Mock(status_code=200, json=Mock(return_value="OK"))
        client = KVClient(ShareConfig(kv_url="https://kv.example", kv_token="secret"), session=session)
        with pytest.raises(StoreFailure, match="unexpected body"):
            client.command("GET", "aio:x")

    def test_unexpected_write_error_falls_back_to_memory(self):
        kv = Mock()
        kv.command.side_effect = RuntimeError("client bug")
        store = ShareStore(ShareConfig(kv_url="https://kv.example/", kv_token="secret"), kv=kv)

        record = store.create(make_payload())

        assert record.persistent is False
        assert store.memory.get(store.key_for(record.id)) is not None
