from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from ragchat.api import routes_chat
from ragchat.api.dependencies import get_pipeline, get_session_store, get_vector_store
from ragchat.api.main import GENERIC_ERROR, app
from ragchat.core.errors import DeadlineExceeded, RequestCancelled, UpstreamUnavailable
from ragchat.core.types import Citation, SessionSummary, StoredMessage
from ragchat.storage.session_store import SessionStore

from conftest import FakeVectorStore


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def use_pipeline():
    def _use(pipeline):
        app.dependency_overrides[get_pipeline] = lambda: pipeline

    return _use


class TestChatEndpoint:
    def test_returns_answer_with_citations(self, client, use_pipeline, make_pipeline, closure_candidates):
        use_pipeline(make_pipeline(FakeVectorStore(closure_candidates)))

        r = client.post("/api/chat", json={"question": "What is a JavaScript closure?", "sessionId": "s-1"})

        assert r.status_code == 200
        body = r.json()
        assert body["sessionId"] == "11111111-1111-1111-1111-111111111111"
        assert body["persisted"] is True
        msg = body["message"]
        assert msg["role"] == "assistant"
        assert msg["metadata"]["model"] == "rag-retrieval-only"
        assert msg["metadata"]["confidence"] == 0.8
        assert isinstance(msg["metadata"]["processingTime"], int)
        assert msg["citations"] == body["citations"]
        first = body["citations"][0]
        assert first["id"] == "closures::0"
        assert first["articleTitle"] == "Closures"
        assert first["trustLevel"] == "direct"
        assert first["url"].endswith("Web/Closures")
        assert "relevanceScore" in first

    def test_empty_question_is_400(self, client, use_pipeline, make_pipeline, embedder):
        use_pipeline(make_pipeline(FakeVectorStore([])))
        r = client.post("/api/chat", json={"question": "   "})
        assert r.status_code == 400
        assert r.json() == {"error": "Question is required"}
        embedder.embed_one.assert_not_called()

    def test_too_long_question_is_400_without_network(self, client, use_pipeline, make_pipeline, embedder):
        store = FakeVectorStore([])
        use_pipeline(make_pipeline(store))

        r = client.post("/api/chat", json={"question": "x" * 2001})

        assert r.status_code == 400
        assert r.json() == {"error": "Question is too long"}
        embedder.embed_one.assert_not_called()
        assert store.checked_out == 0

    def test_malformed_body_is_400(self, client, use_pipeline, make_pipeline):
        use_pipeline(make_pipeline(FakeVectorStore([])))
        r = client.post("/api/chat", content=b"{not json", headers={"Content-Type": "application/json"})
        assert r.status_code == 400
        assert r.json() == {"error": "Invalid JSON body"}

    def test_no_candidates_is_404(self, client, use_pipeline, make_pipeline):
        use_pipeline(make_pipeline(FakeVectorStore([])))
        r = client.post("/api/chat", json={"question": "closure"})
        assert r.status_code == 404
        assert "No relevant content" in r.json()["error"]

    def test_upstream_failure_is_generic_500(self, client, use_pipeline, make_pipeline):
        use_pipeline(make_pipeline(FakeVectorStore(error=UpstreamUnavailable("password=hunter2"))))
        r = client.post("/api/chat", json={"question": "closure"})
        assert r.status_code == 500
        assert r.json() == {"error": GENERIC_ERROR}

    def test_deadline_is_504(self, client, use_pipeline, make_pipeline):
        use_pipeline(make_pipeline(FakeVectorStore(error=DeadlineExceeded("slow"))))
        r = client.post("/api/chat", json={"question": "closure"})
        assert r.status_code == 504

    def test_cancelled_request_is_499(self, client, use_pipeline):
        pipeline = MagicMock(name="pipeline")
        pipeline.answer.side_effect = RequestCancelled("client went away")
        use_pipeline(pipeline)

        r = client.post("/api/chat", json={"question": "closure"})

        assert r.status_code == 499

    def test_client_disconnect_sets_cancel_event(self, client, use_pipeline, monkeypatch):
        seen = {}

        class SlowPipeline:
            def answer(self, question, session_id=None, new_session=False, cancel_event=None):
                seen["cancelled"] = cancel_event.wait(timeout=5.0)
                raise RequestCancelled("client went away")

        async def gone(self):
            return True

        monkeypatch.setattr(routes_chat, "DISCONNECT_POLL_SECONDS", 0.01)
        monkeypatch.setattr(Request, "is_disconnected", gone)
        use_pipeline(SlowPipeline())

        r = client.post("/api/chat", json={"question": "closure"})

        assert seen["cancelled"] is True
        assert r.status_code == 499


class TestSessionEndpoints:
    @pytest.fixture
    def sessions(self, client):
        store = MagicMock(spec=SessionStore)
        app.dependency_overrides[get_vector_store] = lambda: FakeVectorStore()
        app.dependency_overrides[get_session_store] = lambda: store
        return store

    def test_list_sessions(self, client, sessions):
        ts = datetime(2024, 5, 1, tzinfo=timezone.utc)
        sessions.list_sessions.return_value = [SessionSummary(id="s1", title="Closures?", created_at=ts, updated_at=ts)]

        r = client.get("/api/sessions")

        assert r.status_code == 200
        assert r.json()["sessions"][0]["id"] == "s1"
        assert r.json()["sessions"][0]["updatedAt"].startswith("2024-05-01")

    def test_get_session_requires_id(self, client, sessions):
        r = client.get("/api/session")
        assert r.status_code == 400

    def test_get_unknown_session_is_404(self, client, sessions):
        sessions.load_session.return_value = None
        r = client.get("/api/session", params={"sessionId": "nope"})
        assert r.status_code == 404

    def test_get_session_with_messages(self, client, sessions):
        ts = datetime(2024, 5, 1, tzinfo=timezone.utc)
        cit = Citation(id="closures::0", url="u", article_title="Closures", excerpt="e", relevance_score=0.7)
        sessions.load_session.return_value = (
            SessionSummary(id="s1", title="t", created_at=ts, updated_at=ts),
            [
                StoredMessage(id="m1", role="user", content="q", created_at=ts),
                StoredMessage(id="m2", role="assistant", content="a", created_at=ts, citations=[cit]),
            ],
        )

        r = client.get("/api/session", params={"sessionId": "s1"})

        assert r.status_code == 200
        msgs = r.json()["messages"]
        assert [m["role"] for m in msgs] == ["user", "assistant"]
        assert msgs[1]["citations"][0]["articleTitle"] == "Closures"

    def test_delete_one_or_all(self, client, sessions):
        assert client.delete("/api/sessions", params={"sessionId": "s1"}).json() == {"ok": True}
        assert sessions.delete_sessions.call_args.args[1] == "s1"
        client.delete("/api/sessions")
        assert sessions.delete_sessions.call_args.args[1] is None


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
