"""
Tests for the Supabase REST adapter.

Requests are answered by an httpx.MockTransport so the tests see exactly
what would go over the wire.
"""

import json

import httpx
import pytest

from examsync.errors import NetworkError, NotFound, RemoteRejection
from examsync.remote_store import SupabaseStore


class Recorder:
    """Mock transport handler returning canned responses and keeping requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_store(*responses):
    recorder = Recorder(*responses)
    store = SupabaseStore(
        "https://project.supabase.co/",
        "anon-key",
        timeout=5.0,
        transport=httpx.MockTransport(recorder)
    )
    return store, recorder


class TestRequests:
    """Request shape."""

    def test_headers_and_base_url(self):
        store, recorder = make_store(httpx.Response(200, json=[]))

        store.select("exam_sessions", {"id": "s1"})

        request = recorder.last
        assert request.url.path == "/rest/v1/exam_sessions"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer anon-key"

    def test_access_token_used_as_bearer(self):
        recorder = Recorder(httpx.Response(200, json=[]))
        store = SupabaseStore(
            "https://project.supabase.co",
            "anon-key",
            transport=httpx.MockTransport(recorder),
            access_token="user-jwt"
        )

        store.select("profiles")

        assert recorder.last.headers["Authorization"] == "Bearer user-jwt"

    def test_select_filters(self):
        store, recorder = make_store(httpx.Response(200, json=[]))

        store.select(
            "exam_assignments",
            {"user_id": "u1", "is_used": False, "status": ("neq", "completed"), "exam_id": None},
            order="assigned_at.desc",
            limit=1
        )

        params = recorder.last.url.params
        assert params["select"] == "*"
        assert params["user_id"] == "eq.u1"
        assert params["is_used"] == "eq.false"
        assert params["status"] == "neq.completed"
        assert params["exam_id"] == "is.null"
        assert params["order"] == "assigned_at.desc"
        assert params["limit"] == "1"

    def test_or_filter(self):
        store, recorder = make_store(httpx.Response(200, json=[]))

        store.find_credentials({"is_used": False}, or_filter="username.eq.ana,user_email.eq.ana")

        params = recorder.last.url.params
        assert params["or"] == "(username.eq.ana,user_email.eq.ana)"
        assert params["order"] == "created_at.desc"

    def test_update_session_sets_updated_at(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": "s1", "status": "completed"}]))

        rows = store.update_session("s1", {"status": "completed"})

        request = recorder.last
        body = json.loads(request.content)
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.s1"
        assert request.headers["Prefer"] == "return=representation"
        assert body["status"] == "completed"
        assert "updated_at" in body
        assert rows == [{"id": "s1", "status": "completed"}]

    def test_create_attempt_with_id_ignores_duplicates(self):
        store, recorder = make_store(httpx.Response(201, json=[]))

        store.create_attempt("e1", "u1", [{"id": "q1"}], [{"questionId": "q1", "answer": "a"}], attempt_id="a-1")

        request = recorder.last
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.headers["Prefer"] == "return=representation,resolution=ignore-duplicates"
        assert body["id"] == "a-1"
        assert body["answers"] == [{"questionId": "q1", "answer": "a"}]

    def test_fetch_profile_by_email(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": "u1"}]))

        assert store.fetch_profile("ana@example.com") == {"id": "u1"}
        assert recorder.last.url.params["email"] == "eq.ana@example.com"

    def test_restrict_user_access(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": "u1"}]))

        store.restrict_user_access("u1")

        body = json.loads(recorder.last.content)
        assert body["can_login"] is False
        assert body["access_restricted"] is True
        assert "last_exam_completed_at" in body

    def test_insert_personality_responses_sends_one_row_per_answer(self):
        store, recorder = make_store(httpx.Response(201, json=[{"id": 1}, {"id": 2}]))

        store.insert_personality_responses("u1", "s1", [
            {"questionId": "p1", "responseValue": 4},
            {"questionId": "p2", "responseValue": 1},
        ])

        request = recorder.last
        assert request.url.path == "/rest/v1/personality_responses"
        assert json.loads(request.content) == [
            {"user_id": "u1", "session_id": "s1", "question_id": "p1", "response_value": 4},
            {"user_id": "u1", "session_id": "s1", "question_id": "p2", "response_value": 1},
        ]

    def test_insert_personality_results_maps_trait_columns(self):
        store, recorder = make_store(httpx.Response(201, json=[{"id": "r1"}]))

        store.insert_personality_results("u1", "s1", {"apertura": 3.5, "neuroticismo": 2.0})

        body = json.loads(recorder.last.content)
        assert body == {"user_id": "u1", "session_id": "s1", "apertura_score": 3.5, "neuroticismo_score": 2.0}

    def test_has_personality_rows(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": 1}]), httpx.Response(200, json=[]))

        assert store.has_personality_responses("u1", "s1") is True
        assert recorder.last.url.params["limit"] == "1"
        assert recorder.last.url.params["session_id"] == "eq.s1"
        assert store.has_personality_results("u1", "s1") is False
        assert recorder.last.url.path == "/rest/v1/personality_results"

    def test_rpc(self):
        store, recorder = make_store(httpx.Response(200, json={"ok": True}))

        assert store.rpc("finish_exam", {"session_id": "s1"}) == {"ok": True}
        assert recorder.last.url.path == "/rest/v1/rpc/finish_exam"


class TestErrors:
    """Failures are typed."""

    def test_connect_error_is_network(self):
        store, _ = make_store(httpx.ConnectError("Connection refused"))

        with pytest.raises(NetworkError, match="Connection failed"):
            store.fetch_session("s1")

    def test_timeout_is_network(self):
        store, _ = make_store(httpx.ReadTimeout("timed out"))

        with pytest.raises(NetworkError, match="timeout"):
            store.fetch_session("s1")

    @pytest.mark.parametrize("status", [408, 502, 503, 504])
    def test_gateway_status_is_network(self, status):
        store, _ = make_store(httpx.Response(status, text="Bad Gateway"))

        with pytest.raises(NetworkError):
            store.update_session("s1", {"status": "started"})

    def test_rejection_carries_postgrest_fields(self):
        store, _ = make_store(httpx.Response(409, json={
            "message": "duplicate key value violates unique constraint",
            "code": "23505",
            "details": "Key (id)=(a-1) already exists.",
            "hint": None,
        }))

        with pytest.raises(RemoteRejection) as excinfo:
            store.insert("exam_attempts", {"id": "a-1"})

        error = excinfo.value
        assert not isinstance(error, NetworkError)
        assert error.status_code == 409
        assert error.code == "23505"
        assert "duplicate key" in str(error)

    def test_rejection_without_json_body(self):
        store, _ = make_store(httpx.Response(500, text="internal error"))

        with pytest.raises(RemoteRejection, match="status 500"):
            store.select("profiles")

    @pytest.mark.parametrize("error", [
        httpx.TooManyRedirects("Exceeded maximum allowed redirects."),
        httpx.DecodingError("Error -3 while decompressing data"),
    ])
    def test_other_request_errors_are_network(self, error):
        store, _ = make_store(error)

        with pytest.raises(NetworkError, match="Request failed"):
            store.fetch_session("s1")

    def test_non_json_success_body_is_rejection(self):
        store, _ = make_store(httpx.Response(200, text="<html>Sign in to the hotel wifi</html>"))

        with pytest.raises(RemoteRejection, match="not JSON") as excinfo:
            store.select("profiles")

        assert not isinstance(excinfo.value, NetworkError)
        assert excinfo.value.status_code == 200

    def test_fetch_session_missing(self):
        store, _ = make_store(httpx.Response(200, json=[]))

        with pytest.raises(NotFound):
            store.fetch_session("missing")

    def test_update_attempt_missing(self):
        store, _ = make_store(httpx.Response(200, json=[]))

        with pytest.raises(NotFound):
            store.update_attempt("missing", [], [])

    def test_insert_session_without_row(self):
        store, _ = make_store(httpx.Response(201, content=b""))

        with pytest.raises(RemoteRejection):
            store.insert_session({"user_id": "u1"})
