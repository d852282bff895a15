"""Synchronous fakehub client."""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

from fakehub_sdk.exceptions import (
    AuthenticationError,
    ConflictError,
    FakehubError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 503, 504}


class FakehubClient:
    """Synchronous client for a fakehub server.

    Usage:
        client = FakehubClient(base_url="http://localhost:8000")
        login = client.login("alice", "password123!")
        if login.get("requiresMFA"):
            client.verify_mfa(login["tempToken"], "123456")
        repos = client.list_repositories(language="Go")

    Every call returns the ``data`` of the success envelope. Failure
    envelopes raise the matching ``FakehubError`` subclass; only transient
    failures are retried.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        retry_count: int = 3,
        backoff_base: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._retry_count = max(1, retry_count)
        self._backoff_base = backoff_base
        self._http = httpx.Client(
            base_url=f"{self._base_url}/api/v1",
            timeout=timeout,
            transport=transport,
        )
        self.token = token

    @property
    def token(self) -> str | None:
        return self._token

    @token.setter
    def token(self, value: str | None) -> None:
        self._token = value
        if value:
            self._http.headers["Authorization"] = f"Bearer {value}"
        else:
            self._http.headers.pop("Authorization", None)

    # ── Auth ──

    def login(self, login: str, password: str, **device) -> dict:
        """Password step. Stores the token unless a second factor is still required."""
        data = self.request("POST", "/auth/login", json={"username": login, "password": password, **device})
        self._adopt_token(data)
        return data

    def verify_mfa(self, temp_token: str, code: str, **device) -> dict:
        data = self.request("POST", "/auth/mfa/verify", json={"tempToken": temp_token, "code": code, **device})
        self._adopt_token(data)
        return data

    def use_backup_code(self, temp_token: str, code: str) -> dict:
        data = self.request("POST", "/auth/mfa/backup-code", json={"tempToken": temp_token, "code": code})
        self._adopt_token(data)
        return data

    def logout(self) -> None:
        self.request("POST", "/auth/logout")
        self.token = None

    def me(self) -> dict:
        return self.request("GET", "/auth/me")

    def list_sessions(self) -> list[dict]:
        return self.request("GET", "/auth/sessions")

    def revoke_session(self, session_id: str) -> dict:
        return self.request("POST", f"/auth/sessions/{session_id}/revoke")

    def _adopt_token(self, data: dict) -> None:
        if isinstance(data, dict) and data.get("access_token"):
            self.token = data["access_token"]

    # ── Repositories, issues, search ──

    def list_repositories(self, **params) -> dict:
        return self.request("GET", "/repositories", params=params)

    def get_repository(self, owner: str, name: str) -> dict:
        return self.request("GET", f"/repositories/{owner}/{name}")

    def list_issues(self, owner: str, name: str, **params) -> dict:
        return self.request("GET", f"/repositories/{owner}/{name}/issues", params=params)

    def create_issue(self, owner: str, name: str, title: str, **fields) -> dict:
        return self.request("POST", f"/repositories/{owner}/{name}/issues", json={"title": title, **fields})

    def search(self, q: str = "", **params) -> dict:
        return self.request("GET", "/search", params={"q": q, **params})

    # ── Contents, activity, notifications ──

    def get_contents(self, owner: str, name: str, path: str = "", ref: str | None = None) -> dict:
        suffix = f"/{path}" if path else ""
        return self.request("GET", f"/repositories/{owner}/{name}/contents{suffix}", params={"ref": ref})

    def put_file(self, owner: str, name: str, path: str, content: str, sha: str | None = None, **fields) -> dict:
        """Create ``path``, or update it when ``sha`` is the version last read."""
        body = {"content": content, "sha": sha, **fields}
        return self.request(
            "PUT", f"/repositories/{owner}/{name}/contents/{path}",
            json={k: v for k, v in body.items() if v is not None},
        )

    def list_activity(self, filter: str = "all", **params) -> dict:
        return self.request("GET", "/activity", params={"filter": filter, **params})

    def list_notifications(self, filter: str = "unread", **params) -> dict:
        return self.request("GET", "/notifications", params={"filter": filter, **params})

    def mark_notifications_read(self, ids: list[str] | None = None) -> int:
        body = {"unread": False} if ids is None else {"ids": ids, "unread": False}
        return self.request("PATCH", "/notifications", json=body)["updated"]

    # ── Actions ──

    def read_logs(self, owner: str, name: str, run_id: str, offset: int = 0, wait: float = 0) -> dict:
        return self.request(
            "GET", f"/repos/{owner}/{name}/actions/runs/{run_id}/logs", params={"offset": offset, "wait": wait}
        )

    def follow_logs(self, owner: str, name: str, run_id: str, offset: int = 0, wait: float = 5):
        """Yield log lines until the run completes, resuming from each ``next_offset``."""
        while True:
            chunk = self.read_logs(owner, name, run_id, offset=offset, wait=wait)
            yield from chunk["lines"]
            offset = chunk["next_offset"]
            if chunk["complete"]:
                return

    # ── Transport ──

    def request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and unwrap the envelope, retrying transient failures."""
        if "params" in kwargs and kwargs["params"]:
            kwargs["params"] = {k: v for k, v in kwargs["params"].items() if v is not None}

        for attempt in range(self._retry_count):
            try:
                resp = self._http.request(method, path, **kwargs)
                return self._unwrap(resp)
            except TransientError as e:
                if attempt == self._retry_count - 1:
                    raise
                self._sleep(attempt, getattr(e, "retry_after", None))
            except httpx.TransportError as e:
                if attempt == self._retry_count - 1:
                    raise TransientError(f"Failed to connect to fakehub server: {e}") from e
                self._sleep(attempt)
        raise FakehubError("Retry loop exhausted")

    def _sleep(self, attempt: int, retry_after: int | None = None) -> None:
        # Exponential backoff with jitter: 0.5s, 1s, 2s base
        delay = (self._backoff_base * (2 ** attempt)) + random.uniform(0, self._backoff_base / 2)
        if retry_after:
            delay = max(delay, float(retry_after))
        logger.debug("Retry %d/%d after %.2fs", attempt + 1, self._retry_count, delay)
        time.sleep(delay)

    @staticmethod
    def _unwrap(resp: httpx.Response) -> Any:
        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code < 400 and isinstance(body, dict) and body.get("success") is True:
            return body.get("data")
        if resp.status_code < 400:
            return body

        message = body.get("error") if isinstance(body, dict) else None
        message = message or f"API error: {resp.status_code}"
        status = resp.status_code
        if status == 400:
            raise ValidationError(message, body.get("validation_errors") if isinstance(body, dict) else None)
        if status == 401:
            raise AuthenticationError(message)
        if status == 403:
            raise PermissionDeniedError(message)
        if status == 404:
            raise NotFoundError(message)
        if status == 409:
            raise ConflictError(message)
        if status == 429:
            retry_after = resp.headers.get("retry-after")
            raise RateLimitError(int(retry_after) if retry_after and retry_after.isdigit() else None)
        if status in RETRY_STATUSES or (isinstance(body, dict) and body.get("retryable")):
            raise TransientError(message, status_code=status)
        raise FakehubError(message, status_code=status)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
