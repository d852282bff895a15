"""Tests for issues and comments."""

from __future__ import annotations

import asyncio

import pytest

BASE = "/api/v1/repositories/acme/web-app/issues"


@pytest.mark.asyncio
async def test_list_defaults_to_open(client):
    resp = await client.get(BASE)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [i["title"] for i in data["issues"]] == ["Crash on login"]
    assert data["total"] == 1


@pytest.mark.asyncio
async def test_list_filters(client):
    all_issues = (await client.get(f"{BASE}?state=all")).json()["data"]["issues"]
    assert len(all_issues) == 2
    by_label = (await client.get(f"{BASE}?state=all&labels=enhancement")).json()["data"]["issues"]
    assert [i["title"] for i in by_label] == ["Add dark mode"]
    by_assignee = (await client.get(f"{BASE}?assignee=alice")).json()["data"]["issues"]
    assert [i["number"] for i in by_assignee] == [1]
    by_text = (await client.get(f"{BASE}?state=all&q=DARK")).json()["data"]["issues"]
    assert [i["number"] for i in by_text] == [2]


@pytest.mark.asyncio
async def test_invalid_state(client):
    resp = await client.get(f"{BASE}?state=pending")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_issue_takes_next_shared_number(client, bob):
    resp = await client.post(BASE, json={"title": "  Slow search  ", "labels": ["perf", "perf"]}, headers=bob)
    assert resp.status_code == 201
    issue = resp.json()["data"]
    # Issues and pull requests share one counter: #1-#2 issues, #3-#4 pull requests
    assert issue["number"] == 5
    assert issue["title"] == "Slow search"
    assert issue["labels"] == ["perf"]
    assert issue["author"]["username"] == "bob"
    assert issue["state"] == "open"


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_numbers(client, bob):
    responses = await asyncio.gather(*[
        client.post(BASE, json={"title": f"Issue {n}"}, headers=bob) for n in range(5)
    ])
    numbers = sorted(r.json()["data"]["number"] for r in responses)
    assert numbers == [5, 6, 7, 8, 9]


@pytest.mark.asyncio
async def test_create_validation_collects_all_fields(client, bob):
    resp = await client.post(BASE, json={"title": " ", "assignees": ["ghost"]}, headers=bob)
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"title", "assignees"}


@pytest.mark.asyncio
async def test_create_requires_auth(client):
    assert (await client.post(BASE, json={"title": "x"})).status_code == 401


@pytest.mark.asyncio
async def test_archived_repository_is_read_only(client, carol):
    resp = await client.post(
        "/api/v1/repositories/carol/old-prototype/issues", json={"title": "x"}, headers=carol
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_close_sets_closed_at(client, bob):
    resp = await client.post(f"{BASE}/1/close", headers=bob)
    assert resp.status_code == 200
    issue = resp.json()["data"]
    assert issue["state"] == "closed"
    assert issue["closed_at"] is not None

    reopened = (await client.post(f"{BASE}/1/reopen", headers=bob)).json()["data"]
    assert reopened["state"] == "open"
    assert reopened["closed_at"] is None


@pytest.mark.asyncio
async def test_patch_issue(client, alice):
    resp = await client.patch(f"{BASE}/1", json={"labels": ["bug", "p1"], "assignees": ["bob"]}, headers=alice)
    assert resp.status_code == 200
    issue = resp.json()["data"]
    assert issue["labels"] == ["bug", "p1"]
    assert [a["username"] for a in issue["assignees"]] == ["bob"]


@pytest.mark.asyncio
async def test_outsider_cannot_edit(client, carol):
    resp = await client.patch(f"{BASE}/1", json={"title": "Hijacked"}, headers=carol)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_missing_issue(client):
    assert (await client.get(f"{BASE}/999")).status_code == 404


@pytest.mark.asyncio
async def test_comments(client, carol):
    resp = await client.post(f"{BASE}/1/comments", json={"body": "Same here"}, headers=carol)
    assert resp.status_code == 201
    comments = (await client.get(f"{BASE}/1/comments")).json()["data"]
    assert [c["body"] for c in comments["comments"]] == ["Same here"]
    issue = (await client.get(f"{BASE}/1")).json()["data"]
    assert issue["comments_count"] == 1

    empty = await client.post(f"{BASE}/1/comments", json={"body": "  "}, headers=carol)
    assert empty.status_code == 400


@pytest.mark.asyncio
async def test_issues_across_repositories(client, alice):
    resp = await client.get("/api/v1/issues?filter=assigned", headers=alice)
    assert [i["title"] for i in resp.json()["data"]["issues"]] == ["Crash on login"]

    anonymous = await client.get("/api/v1/issues?filter=created")
    assert anonymous.status_code == 400


@pytest.mark.asyncio
async def test_patch_state_closed_is_reflected_on_get(client, bob):
    resp = await client.patch(f"{BASE}/1", json={"state": "closed"}, headers=bob)
    assert resp.status_code == 200
    assert resp.json()["data"]["closed_at"] is not None

    issue = (await client.get(f"{BASE}/1")).json()["data"]
    assert issue["state"] == "closed"
    assert issue["closed_at"] == resp.json()["data"]["closed_at"]
