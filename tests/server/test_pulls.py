"""Tests for pull requests, reviews and merging."""

from __future__ import annotations

import pytest

BASE = "/api/v1/repositories/acme/web-app/pulls"


@pytest.mark.asyncio
async def test_list_open_includes_drafts(client):
    data = (await client.get(BASE)).json()["data"]
    assert sorted(p["number"] for p in data["pull_requests"]) == [3, 4]


@pytest.mark.asyncio
async def test_status_filter(client):
    drafts = (await client.get(f"{BASE}?status=draft")).json()["data"]["pull_requests"]
    assert [p["title"] for p in drafts] == ["WIP: new layout"]
    assert drafts[0]["status"] == "draft"

    bad = await client.get(f"{BASE}?status=sideways")
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_create_pull_request(client, bob):
    resp = await client.post(BASE, json={"title": "Add search", "head": "search"}, headers=bob)
    assert resp.status_code == 201
    pr = resp.json()["data"]
    assert pr["number"] == 5
    assert pr["base_ref"] == "main"
    assert pr["review_state"] == "pending"
    assert pr["reviews"] == []


@pytest.mark.asyncio
async def test_head_must_differ_from_base(client, bob):
    resp = await client.post(BASE, json={"title": "Oops", "head": "main"}, headers=bob)
    assert resp.status_code == 400
    assert "head" in resp.json()["validation_errors"]


@pytest.mark.asyncio
async def test_review_flow_gates_merge(client, alice, bob):
    # Authors may only comment on their own pull request
    own = await client.post(f"{BASE}/3/reviews", json={"state": "approved"}, headers=bob)
    assert own.status_code == 400

    no_body = await client.post(f"{BASE}/3/reviews", json={"state": "changes_requested"}, headers=alice)
    assert no_body.status_code == 400

    requested = await client.post(
        f"{BASE}/3/reviews", json={"state": "changes_requested", "body": "Needs a test"}, headers=alice
    )
    assert requested.status_code == 201
    assert (await client.get(f"{BASE}/3")).json()["data"]["review_state"] == "changes_requested"

    blocked = await client.post(f"{BASE}/3/merge", headers=alice)
    assert blocked.status_code == 409

    await client.post(f"{BASE}/3/reviews", json={"state": "approved"}, headers=alice)
    pr = (await client.get(f"{BASE}/3")).json()["data"]
    assert pr["review_state"] == "approved"
    assert [r["state"] for r in pr["reviews"]] == ["changes_requested", "approved"]

    merged = await client.post(f"{BASE}/3/merge", json={"merge_method": "squash"}, headers=alice)
    assert merged.status_code == 200
    assert merged.json()["data"]["status"] == "merged"
    assert merged.json()["data"]["state"] == "closed"

    again = await client.post(f"{BASE}/3/merge", headers=alice)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_draft_cannot_merge(client, alice):
    assert (await client.post(f"{BASE}/4/merge", headers=alice)).status_code == 409
    ready = await client.patch(f"{BASE}/4", json={"draft": False}, headers=alice)
    assert ready.status_code == 200
    assert (await client.post(f"{BASE}/4/merge", headers=alice)).status_code == 200


@pytest.mark.asyncio
async def test_merge_requires_write_access(client, carol):
    assert (await client.post(f"{BASE}/3/merge", headers=carol)).status_code == 403


@pytest.mark.asyncio
async def test_bad_merge_method(client, alice):
    resp = await client.post(f"{BASE}/3/merge", json={"merge_method": "octopus"}, headers=alice)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_close_and_edit_merged(client, alice):
    closed = await client.patch(f"{BASE}/4", json={"state": "closed"}, headers=alice)
    assert closed.json()["data"]["status"] == "closed"
    assert (await client.post(f"{BASE}/4/merge", headers=alice)).status_code == 409

    await client.post(f"{BASE}/3/merge", headers=alice)
    edit = await client.patch(f"{BASE}/3", json={"title": "Renamed"}, headers=alice)
    assert edit.status_code == 409
