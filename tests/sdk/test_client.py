"""Tests for FakehubClient.

Uses httpx mock transport to simulate server responses without real HTTP calls.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from fakehub_sdk import (
    AuthenticationError,
    ConflictError,
    FakehubClient,
    FakehubError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransientError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Test data
# ---------------------------------------------------------------------------

SAMPLE_REPO = {
    "id": "7f0c7a4e-1b2d-4c55-9e51-1a0f0c7e2b11",
    "name": "web-app",
    "full_name": "acme/web-app",
    "language": "TypeScript",
    "stargazers_count": 1200,
}

LOGIN_OK = {
    "access_token": "fhs_abc",
    "token_type": "bearer",
    "expires_at": "2026-01-02T00:00:00Z",
    "session_id": "s-1",
    "user": {"username": "alice"},
}


def ok(data) -> dict:
    return {"success": True, "data": data}


def fail(message: str, **extra) -> dict:
    return {"success": False, "error": message, **extra}


def _mock_transport(responses: list[tuple[int, dict | None, dict | None]], seen: list | None = None):
    """Create a mock httpx transport that returns pre-configured responses.

    Each item in responses is (status_code, json_body, headers).
    Responses are consumed in order; last one repeats forever.
    Requests are appended to ``seen`` when given.
    """
    call_count = [0]

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        idx = min(call_count[0], len(responses) - 1)
        call_count[0] += 1
        status, body, headers = responses[idx]
        return httpx.Response(status, json=body, headers=headers or {})

    return httpx.MockTransport(handler)


def _client(responses, seen=None, **kwargs) -> FakehubClient:
    return FakehubClient(base_url="http://test", transport=_mock_transport(responses, seen), **kwargs)


# ---------------------------------------------------------------------------
# Envelope handling
# ---------------------------------------------------------------------------

class TestEnvelope:
    def test_unwraps_data(self):
        client = _client([(200, ok(SAMPLE_REPO), None)])
        assert client.get_repository("acme", "web-app") == SAMPLE_REPO

    def test_request_path_and_params(self):
        seen: list[httpx.Request] = []
        client = _client([(200, ok({"repositories": []}), None)], seen)
        client.list_repositories(language="Go", stars=None)
        assert seen[0].url.path == "/api/v1/repositories"
        assert dict(seen[0].url.params) == {"language": "Go"}

    def test_non_envelope_body_passes_through(self):
        client = _client([(200, {"status": "ok"}, None)])
        assert client.request("GET", "/whatever") == {"status": "ok"}

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [
            (401, AuthenticationError),
            (403, PermissionDeniedError),
            (404, NotFoundError),
            (409, ConflictError),
        ],
    )
    def test_typed_errors(self, status, error_type):
        client = _client([(status, fail("nope"), None)])
        with pytest.raises(error_type) as exc_info:
            client.get_repository("acme", "web-app")
        assert exc_info.value.message == "nope"
        assert exc_info.value.status_code == status

    def test_validation_errors_carry_fields(self):
        client = _client([(400, fail("Validation failed", validation_errors={"title": ["must not be empty"]}), None)])
        with pytest.raises(ValidationError) as exc_info:
            client.create_issue("acme", "web-app", "")
        assert exc_info.value.errors == {"title": ["must not be empty"]}

    def test_unexpected_status(self):
        client = _client([(500, fail("Internal server error"), None)])
        with pytest.raises(FakehubError) as exc_info:
            client.me()
        assert exc_info.value.status_code == 500
        assert not exc_info.value.retryable


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------

class TestRetries:
    @patch("fakehub_sdk.client.time.sleep")
    def test_retries_transient_then_succeeds(self, mock_sleep):
        client = _client([
            (503, fail("Network error", retryable=True), {"Retry-After": "1"}),
            (200, ok(SAMPLE_REPO), None),
        ])
        assert client.get_repository("acme", "web-app") == SAMPLE_REPO
        assert mock_sleep.call_count == 1

    @patch("fakehub_sdk.client.time.sleep")
    def test_gives_up_after_retry_count(self, mock_sleep):
        client = _client([(504, fail("Upstream request timed out", retryable=True), None)], retry_count=2)
        with pytest.raises(TransientError) as exc_info:
            client.me()
        assert exc_info.value.status_code == 504
        assert exc_info.value.retryable
        assert mock_sleep.call_count == 1

    @patch("fakehub_sdk.client.time.sleep")
    def test_rate_limit_honours_retry_after(self, mock_sleep):
        client = _client([(429, fail("Rate limit exceeded"), {"Retry-After": "7"})], retry_count=2)
        with pytest.raises(RateLimitError) as exc_info:
            client.me()
        assert exc_info.value.retry_after == 7
        assert mock_sleep.call_args[0][0] >= 7

    @patch("fakehub_sdk.client.time.sleep")
    def test_client_errors_are_not_retried(self, mock_sleep):
        seen: list[httpx.Request] = []
        client = _client([(404, fail("Repository not found"), None)], seen)
        with pytest.raises(NotFoundError):
            client.get_repository("acme", "infra")
        assert len(seen) == 1
        mock_sleep.assert_not_called()

    @patch("fakehub_sdk.client.time.sleep")
    def test_connection_error_becomes_transient(self, mock_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = FakehubClient(base_url="http://test", transport=httpx.MockTransport(handler), retry_count=2)
        with pytest.raises(TransientError, match="Failed to connect"):
            client.me()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestAuth:
    def test_login_adopts_token(self):
        seen: list[httpx.Request] = []
        client = _client([(200, ok(LOGIN_OK), None), (200, ok({"username": "alice"}), None)], seen)
        client.login("alice", "password123!")
        assert client.token == "fhs_abc"
        client.me()
        assert seen[1].headers["Authorization"] == "Bearer fhs_abc"

    def test_mfa_challenge_leaves_no_token(self):
        challenge = {"requiresMFA": True, "tempToken": "tmp-1", "methods": ["totp", "backup_code"]}
        client = _client([(200, ok(challenge), None), (200, ok(LOGIN_OK), None)])
        data = client.login("mfa-user", "password123!")
        assert data["requiresMFA"] is True
        assert client.token is None

        client.verify_mfa(data["tempToken"], "123456")
        assert client.token == "fhs_abc"

    def test_logout_clears_token(self):
        seen: list[httpx.Request] = []
        client = _client([(200, ok({"logged_out": True}), None), (401, fail("Authentication required"), None)], seen)
        client.token = "fhs_abc"
        client.logout()
        assert client.token is None
        with pytest.raises(AuthenticationError):
            client.me()
        assert "Authorization" not in seen[1].headers


# ---------------------------------------------------------------------------
# Contents and notifications
# ---------------------------------------------------------------------------

class TestContents:
    def test_root_and_ref(self):
        seen: list[httpx.Request] = []
        client = _client([(200, ok({"type": "dir", "entries": []}), None)], seen)
        client.get_contents("acme", "web-app")
        client.get_contents("acme", "web-app", "src/app.ts", ref="develop")
        assert seen[0].url.path == "/api/v1/repositories/acme/web-app/contents"
        assert dict(seen[0].url.params) == {}
        assert seen[1].url.path == "/api/v1/repositories/acme/web-app/contents/src/app.ts"
        assert dict(seen[1].url.params) == {"ref": "develop"}

    def test_put_file_sends_sha_only_when_given(self):
        seen: list[httpx.Request] = []
        client = _client([(201, ok({"content": {}, "commit": {}}), None)], seen)
        client.put_file("acme", "web-app", "a.md", "hi")
        client.put_file("acme", "web-app", "a.md", "hi again", sha="abc", message="Edit")
        assert json.loads(seen[0].content) == {"content": "hi"}
        assert json.loads(seen[1].content) == {"content": "hi again", "sha": "abc", "message": "Edit"}
        assert seen[1].method == "PUT"

    def test_mark_notifications_read(self):
        seen: list[httpx.Request] = []
        client = _client([(200, ok({"updated": 2}), None)], seen)
        assert client.mark_notifications_read() == 2
        client.mark_notifications_read(["n1"])
        assert json.loads(seen[0].content) == {"unread": False}
        assert json.loads(seen[1].content) == {"ids": ["n1"], "unread": False}
        assert seen[0].url.path == "/api/v1/notifications"


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------

class TestFollowLogs:
    def test_follows_until_complete(self):
        seen: list[httpx.Request] = []
        client = _client([
            (200, ok({"lines": [{"offset": 0, "text": "a"}], "offset": 0, "next_offset": 1, "total": 1, "complete": False}), None),
            (200, ok({"lines": [{"offset": 1, "text": "b"}], "offset": 1, "next_offset": 2, "total": 2, "complete": True}), None),
        ], seen)
        lines = list(client.follow_logs("acme", "web-app", "run-1", wait=1))
        assert [line["text"] for line in lines] == ["a", "b"]
        assert [r.url.params["offset"] for r in seen] == ["0", "1"]
        assert seen[0].url.path == "/api/v1/repos/acme/web-app/actions/runs/run-1/logs"
